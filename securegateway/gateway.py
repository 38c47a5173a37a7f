"""
Security Gateway - the request pipeline in front of the generation backends

authenticate -> rate limit -> validate -> assess threat -> sanitize
-> forward -> filter response -> audit
"""
import asyncio
import logging
import time
from typing import Any, Dict, List, NoReturn, Optional

from .alerts import AlertService
from .audit import AI_REQUEST_SUCCESS, AuditLogger, AuditLogEntry, MemoryAuditStore, SQLiteAuditStore
from .backend_forwarder import BackendForwarder
from .config import GatewayConfig
from .errors import (
    AuthRequired,
    ForwardingFailure,
    InternalError,
    InvalidSession,
    RateLimitExceeded,
    SecurityError,
    StageResult,
    ThreatCritical,
    ValidationFailed,
)
from .models import (
    BackendResponse,
    CallerTier,
    ComplianceStatus,
    SecureRequest,
    SecureResponse,
    SecurityContext,
    SecurityMetadata,
    Severity,
)
from .rate_limiter import RateLimitDecision, RateLimiterRegistry
from .security import (
    ContentSanitizer,
    HeuristicThreatScorer,
    InputValidator,
    SanitizationOutcome,
    ThreatAssessment,
    ThreatLevel,
    ThreatScorer,
    ValidationResult,
    filter_output,
)
from .sessions import SessionManager

logger = logging.getLogger(__name__)

REMEDIABLE_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


class SecurityGateway:
    """
    Runs every AI request through the security pipeline.

    Each stage returns a StageResult; the first failed stage aborts the
    pipeline. Every request that enters handle() leaves exactly one
    terminal audit entry, ai_request_success or ai_request_failed.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        *,
        sessions: Optional[SessionManager] = None,
        rate_limiters: Optional[RateLimiterRegistry] = None,
        threat_scorer: Optional[ThreatScorer] = None,
        validator: Optional[InputValidator] = None,
        audit: Optional[AuditLogger] = None,
        forwarder: Optional[BackendForwarder] = None,
        alerts: Optional[AlertService] = None,
    ):
        self.config = config or GatewayConfig()
        self.sessions = sessions or SessionManager(ttl_minutes=self.config.session_ttl_minutes)
        self.rate_limiters = rate_limiters or RateLimiterRegistry(self.config.tiers)
        self.threat_scorer = threat_scorer or HeuristicThreatScorer()
        self.validator = validator or InputValidator(self.config.tiers, self.threat_scorer)
        self.sanitizer = ContentSanitizer(self.validator.matchers)
        self.audit = audit or self._create_audit_logger()
        self.forwarder = forwarder or BackendForwarder(self.config.backends)
        self.alerts = alerts or AlertService(self.config.alert_channels)

    def _create_audit_logger(self) -> AuditLogger:
        settings = self.config.audit
        store = SQLiteAuditStore(settings.database_path) if settings.database_path else MemoryAuditStore()
        return AuditLogger(
            store=store,
            buffer_size=settings.buffer_size,
            flush_interval_seconds=settings.flush_interval_seconds,
        )

    async def start(self) -> None:
        await self.audit.start()
        await self.forwarder.initialize()
        logger.info("Security gateway started")

    async def close(self) -> None:
        await self.forwarder.close()
        await self.alerts.close()
        await self.audit.close()
        logger.info("Security gateway stopped")

    async def handle(self, request: SecureRequest, context: SecurityContext) -> SecureResponse:
        """Run the full pipeline; raises a SecurityError subclass when any stage aborts"""
        started = time.monotonic()
        try:
            response = await self._run_pipeline(request, context, started)
        except SecurityError as error:
            error.request_id = error.request_id or request.request_id
            self._record_failure(request, context, error, started)
            raise
        except Exception as e:
            logger.error(f"Unexpected error handling request {request.request_id}: {e}", exc_info=True)
            error = InternalError(f"Unexpected gateway error: {e}", request_id=request.request_id)
            self._record_failure(request, context, error, started)
            raise error from e
        return response

    async def _run_pipeline(self, request: SecureRequest, context: SecurityContext, started: float) -> SecureResponse:
        trail: List[str] = []

        if not (auth := self._authenticate(request, context)).ok:
            self._abort(auth.error, request, context)
        trail.append("authenticated")

        if not (admission := self._rate_limit(request, context)).ok:
            self._abort(admission.error, request, context)
        trail.append("rate_limit_passed")

        if not (validation := self._validate(request, context)).ok:
            self._abort(validation.error, request, context)
        result: ValidationResult = validation.value
        trail.append("validated" if result.passed else "validated_with_remediation")

        if not (threat := await self._assess_threat(request, context)).ok:
            self._abort(threat.error, request, context)
        assessment: ThreatAssessment = threat.value
        if assessment.level is not ThreatLevel.NORMAL:
            trail.append(f"threat_{assessment.level.value}")

        sanitized = self._sanitize(request, result)
        trail.extend(f"sanitized:{action['kind']}" for action in sanitized.actions)

        if not (forwarded := await self._forward(sanitized.request, context)).ok:
            self._abort(forwarded.error, request, context)
        backend_response: BackendResponse = forwarded.value
        trail.append("forwarded")

        filtered = self._filter_response(backend_response, context)
        trail.append("response_filtered")

        security_level = "filtered" if sanitized.changed else "validated"
        compliance_status = self.compliance_status(context.tier)
        self.audit.record(AuditLogEntry(
            caller_id=request.caller_id,
            action=AI_REQUEST_SUCCESS,
            resource=request.target_module or "ai_gateway",
            success=True,
            security_level=Severity.MEDIUM if sanitized.changed else Severity.LOW,
            threat_score=assessment.score,
            metadata={
                "requestId": request.request_id,
                "validationScore": result.score,
                "threatScore": assessment.score,
                "securityLevel": security_level,
                "backendModel": filtered.model,
                "processingTimeMs": round((time.monotonic() - started) * 1000, 1),
                "encryption": {"level": "AES-256", "atRest": True, "inTransit": True},
                "complianceStatus": compliance_status.to_dict(),
                "sanitization": sanitized.actions,
            },
            network_origin=context.network_origin,
            user_agent=context.user_agent,
            session_id=context.session_id,
        ))
        trail.append("audit_logged")

        return SecureResponse(
            content=filtered.content,
            confidence=filtered.confidence,
            backend_model=filtered.model,
            usage=filtered.usage,
            cached=filtered.cached,
            security_level=security_level,
            request_id=request.request_id,
            security_metadata=SecurityMetadata(
                validation_score=result.score,
                threat_score=assessment.score,
                compliance_status=compliance_status,
                audit_trail=trail,
            ),
        )

    def _abort(self, error: SecurityError, request: SecureRequest, context: SecurityContext) -> NoReturn:
        """Write the stage-specific audit entries for an aborting error, then raise it"""
        error.request_id = error.request_id or request.request_id
        match error:
            case ValidationFailed(violations=violations, risk_level=risk_level):
                self.audit.log_security_violation(request, context, violations, risk_level)
                context.risk_profile.escalate(risk_level.risk_increment, risk_level, "validation_failed")
                logger.warning(
                    f"Request {request.request_id} from {request.caller_id} failed validation "
                    f"({risk_level.value}): {[v.kind for v in violations]}"
                )
            case RateLimitExceeded(retry_after_seconds=retry_after):
                logger.warning(f"Request {request.request_id} rate limited, retry after {retry_after}s")
            case ThreatCritical():
                logger.warning(f"Request {request.request_id} rejected: caller {context.caller_id} is blocked")
            case AuthRequired() | InvalidSession():
                logger.warning(f"Authentication failed for request {request.request_id}: {error.message}")
            case ForwardingFailure():
                logger.error(f"Forwarding failed for request {request.request_id}: {error.message}")
        raise error

    def _record_failure(self, request: SecureRequest, context: SecurityContext,
                        error: SecurityError, started: float) -> None:
        self.audit.log_security_error(request, context, error, metadata={
            "processingTimeMs": round((time.monotonic() - started) * 1000, 1),
        })

    def _authenticate(self, request: SecureRequest, context: SecurityContext) -> StageResult[None]:
        caller_id = context.caller_id or request.caller_id
        session_id = context.session_id or request.session_id
        if not caller_id:
            return StageResult.fail(AuthRequired("Caller id is required"))
        if not session_id:
            return StageResult.fail(AuthRequired("Session id is required"))
        if request.caller_id and context.caller_id and request.caller_id != context.caller_id:
            return StageResult.fail(InvalidSession("Request caller does not match the security context"))
        if block := self.sessions.get_block(caller_id):
            return StageResult.fail(ThreatCritical(
                f"Caller is blocked until {block.until.isoformat()}",
                details={"blockedUntil": block.until.isoformat(), "reason": block.reason},
            ))
        if not self.sessions.validate(session_id, caller_id):
            return StageResult.fail(InvalidSession("Session is invalid or expired"))
        return StageResult.success()

    def _rate_limit(self, request: SecureRequest, context: SecurityContext) -> StageResult[RateLimitDecision]:
        decision = self.rate_limiters.try_acquire(context.caller_id or request.caller_id, context.tier)
        if not decision.allowed:
            return StageResult.fail(RateLimitExceeded(
                f"Rate limit exceeded. Try again in {decision.retry_after_seconds} seconds.",
                retry_after_seconds=decision.retry_after_seconds,
                details={"reason": decision.reason, "limit": decision.limit, "burstLimit": decision.burst_limit},
            ))
        return StageResult.success(decision)

    def _validate(self, request: SecureRequest, context: SecurityContext) -> StageResult[ValidationResult]:
        result = self.validator.validate(request, context)
        if result.passed:
            return StageResult.success(result)

        if self._is_remediable(result):
            # Sanitization takes care of these; still a violation on the caller's record
            self.audit.log_security_violation(request, context, result.violations, result.risk_level)
            context.risk_profile.escalate(result.risk_level.risk_increment, result.risk_level, "content_remediated")
            logger.warning(
                f"Request {request.request_id} has remediable violations: {[v.kind for v in result.violations]}"
            )
            return StageResult.success(result)

        return StageResult.fail(ValidationFailed(
            "Request failed security validation",
            violations=result.violations,
            risk_level=result.risk_level,
            details={"recommendations": result.recommendations},
        ))

    def _is_remediable(self, result: ValidationResult) -> bool:
        return bool(result.violations) and all(
            v.kind in self.config.remediable_checks and v.severity in REMEDIABLE_SEVERITIES
            for v in result.violations
        )

    async def _assess_threat(self, request: SecureRequest, context: SecurityContext) -> StageResult[ThreatAssessment]:
        policy = self.config.threat_policy
        assessment = ThreatAssessment.classify(self.threat_scorer.score(request, context), policy)

        match assessment.level:
            case ThreatLevel.NORMAL:
                return StageResult.success(assessment)
            case ThreatLevel.HIGH:
                self.audit.log_high_threat(request, context, assessment.score)
                await self.alerts.trigger_alert(
                    "high_threat", Severity.HIGH,
                    f"High threat score {assessment.score:.2f} from {request.caller_id}",
                    {"requestId": request.request_id, "callerId": request.caller_id},
                )
                return StageResult.success(assessment)
            case ThreatLevel.CRITICAL:
                self.audit.log_high_threat(request, context, assessment.score, {"blocked": True})
                self.sessions.block(request.caller_id, f"critical threat score {assessment.score:.2f}",
                                    hours=policy.block_hours)
                await self.alerts.trigger_alert(
                    "critical_threat", Severity.CRITICAL,
                    f"Caller {request.caller_id} blocked for {policy.block_hours}h after threat score "
                    f"{assessment.score:.2f}",
                    {"requestId": request.request_id, "callerId": request.caller_id},
                )
                if policy.abort_on_critical:
                    return StageResult.fail(ThreatCritical(
                        "Critical threat detected; caller has been blocked",
                        details={"threatScore": assessment.score},
                    ))
                return StageResult.success(assessment)

    def _sanitize(self, request: SecureRequest, result: ValidationResult) -> SanitizationOutcome:
        return self.sanitizer.sanitize(request, result)

    async def _forward(self, request: SecureRequest, context: SecurityContext) -> StageResult[BackendResponse]:
        timeout = self.config.forward_timeout_seconds
        started = time.monotonic()
        try:
            response = await asyncio.wait_for(self.forwarder.forward(request, context), timeout=timeout)
        except asyncio.TimeoutError:
            return StageResult.fail(ForwardingFailure(f"Backend did not respond within {timeout}s"))
        except SecurityError as e:
            return StageResult.fail(e)
        except Exception as e:
            return StageResult.fail(ForwardingFailure(f"Backend request failed: {e}"))
        finally:
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.info(f"Forward for request {request.request_id} took {elapsed_ms:.1f}ms")
        return StageResult.success(response)

    def _filter_response(self, response: BackendResponse, context: SecurityContext) -> BackendResponse:
        return BackendResponse(
            content=filter_output(response.content, context.tier),
            model=response.model,
            confidence=response.confidence,
            usage=response.usage,
            cached=response.cached,
        )

    def compliance_status(self, tier: CallerTier) -> ComplianceStatus:
        return ComplianceStatus.for_tier(tier)

    def rate_limit_status(self, caller_id: str, tier: CallerTier) -> Dict[str, Any]:
        """Usage, headers and tier limits for a caller, without counting a request"""
        limiter = self.rate_limiters.get(caller_id, tier)
        return {
            "usage": limiter.current_usage(),
            "headers": limiter.headers(),
            "tierInfo": limiter.tier_info(),
            "approachingLimit": limiter.is_approaching_limit(),
        }
