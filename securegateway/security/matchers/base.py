"""Base class for content matchers"""
from abc import ABC, abstractmethod
from typing import List, Tuple
import re

# (matched_text, start_position, end_position)
MatchSpan = Tuple[str, int, int]


class ContentMatcher(ABC):
    """Abstract base class for anything that locates suspicious spans in text"""

    def __init__(self, name: str, weight: float = 0.1, min_score: float = 0.0):
        """
        Initialize matcher.

        Args:
            name: Identifier reported in validation details
            weight: Score contributed by each match when content is scored
            min_score: Lowest score of any content this matcher matches,
                whatever the content length
        """
        self.name = name
        self.weight = weight
        self.min_score = min_score

    @abstractmethod
    def find_matches(self, text: str) -> List[MatchSpan]:
        """
        Find all matches in the given text.

        Args:
            text: The text to search

        Returns:
            List of tuples containing (matched_text, start_position, end_position)
        """
        pass

    def contains_match(self, text: str) -> bool:
        """Check if the text contains at least one match"""
        return len(self.find_matches(text)) > 0

    def mask_matches(self, text: str, mask_char: str = '*') -> str:
        """
        Mask every match in the text, keeping the first and last two characters.

        Args:
            text: The text containing matches
            mask_char: Character to use for masking

        Returns:
            Text with matches masked
        """
        matches = self.find_matches(text)
        if not matches:
            return text

        # Replace from the end so earlier positions stay valid
        matches.sort(key=lambda x: x[1], reverse=True)

        result = text
        for matched_text, start, end in matches:
            if len(matched_text) > 4:
                masked = matched_text[:2] + mask_char * (len(matched_text) - 4) + matched_text[-2:]
            else:
                masked = mask_char * len(matched_text)
            result = result[:start] + masked + result[end:]

        return result

    def __str__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', weight={self.weight})"

    def __repr__(self) -> str:
        return self.__str__()


class RegexMatcher(ContentMatcher):
    """Matcher backed by a single compiled regular expression"""

    def __init__(self, name: str, pattern: str, weight: float = 0.1, flags: int = re.IGNORECASE,
                 min_score: float = 0.0):
        super().__init__(name, weight, min_score)
        self.pattern = re.compile(pattern, flags)

    def find_matches(self, text: str) -> List[MatchSpan]:
        return [(m.group(0), m.start(), m.end()) for m in self.pattern.finditer(text)]
