from __future__ import annotations

from typing import Callable, Optional
import logging

from .actionsets import create_action_set
from .config import ControlConfig
from .credentials import CredentialResolver, PromptProvider
from .errors import ControlError
from .transports import Transport, create_transport
from .types import ActionOutcome, ControlScript, RunResult
from .validation import SystemValidation, validate

logger = logging.getLogger(__name__)

TransportFactory = Callable[[ControlConfig], Transport]


def _default_transport_factory(config: ControlConfig) -> Transport:
    return create_transport(config.transport, config)


class ControlRunner:
    """Runs one control script against one host, stopping at the first failure."""

    def __init__(
        self,
        config: Optional[ControlConfig] = None,
        *,
        transport_factory: Optional[TransportFactory] = None,
        prompt: Optional[PromptProvider] = None,
    ):
        self.config = config or ControlConfig()
        self.transport_factory = transport_factory or _default_transport_factory
        self.prompt = prompt

    def run(self, script: ControlScript) -> RunResult:
        resolver = CredentialResolver(script, self.prompt)
        try:
            constraint = (
                SystemValidation.parse(script.system_validation) if script.system_validation else None
            )
            host = resolver.resolve("host")
            credentials = resolver.credentials()
            action_set = create_action_set(
                script.provider,
                self.config,
                user=credentials.username,
                resolver=resolver,
            )
        except ControlError as exc:
            return self._aborted(exc)

        transport = self.transport_factory(self.config)
        try:
            try:
                logger.info("connecting to %s:%s as %s", host, script.port, credentials.username)
                transport.connect(host, script.port)
                transport.authenticate(credentials)
                if constraint is not None:
                    validate(transport, constraint)
            except ControlError as exc:
                return self._aborted(exc)
            return self._run_actions(script, action_set, transport)
        finally:
            transport.close()

    def _run_actions(self, script: ControlScript, action_set, transport: Transport) -> RunResult:
        result = RunResult()
        total = len(script.actions)
        for index, action in enumerate(script.actions, start=1):
            logger.info("[%d/%d] %s %s", index, total, action.kind, action.resource or "")
            try:
                outcome = action_set.execute(action, transport)
            except Exception as exc:  # noqa: BLE001
                logger.error("action=%s failed: %s", action.kind, exc, exc_info=True)
                outcome = ActionOutcome.failure(action, f"unexpected error: {exc}")
            logger.debug("action=%s status=%s details=%s", action.kind, outcome.status.value, outcome.details)
            result.outcomes.append(outcome)
            if not outcome.failed:
                continue
            if getattr(action, "ignore_failure", False):
                logger.warning("action %d (%s) failed, continuing: %s", index, action.kind, outcome.details)
                continue
            result.aborted = True
            result.abort_reason = f"action {index} ({action.kind}) failed: {outcome.details}"
            logger.error(result.abort_reason)
            break
        return result

    @staticmethod
    def _aborted(exc: ControlError) -> RunResult:
        reason = f"{type(exc).__name__}: {exc}"
        logger.error("run aborted: %s", reason)
        return RunResult(aborted=True, abort_reason=reason)


def run_control(
    script: ControlScript,
    config: Optional[ControlConfig] = None,
    *,
    transport_factory: Optional[TransportFactory] = None,
    prompt: Optional[PromptProvider] = None,
) -> RunResult:
    return ControlRunner(config, transport_factory=transport_factory, prompt=prompt).run(script)
