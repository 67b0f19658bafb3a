"""Session orchestration.

This is the single place that owns:
- the session-creation state machine (negotiate, provision, open, register)
- command forwarding and deletion for registered sessions
- the HTTP client sessions used to talk to collaborators

Collaborators and the registry are injected; nothing here is module state.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import timedelta

import aiohttp

from hubproxy import capabilities
from hubproxy.backend import BackendResponse, BackendSessionClient
from hubproxy.config import ProxyConfig
from hubproxy.errors import InvalidArgument, NoSuchSession, ProxyError
from hubproxy.provisioning import ProvisioningClient
from hubproxy.registry import SessionRecord, SessionRegistry
from hubproxy.transport import new_client_session

log = logging.getLogger("proxy")


class CreationState(enum.Enum):
    RECEIVED = "received"
    CAPABILITIES_VALIDATED = "capabilities_validated"
    PROVISIONED = "provisioned"
    BACKEND_SESSION_OPEN = "backend_session_open"
    REGISTERED = "registered"
    FAILED = "failed"


@dataclass(frozen=True)
class CreatedSession:
    record: SessionRecord
    body: bytes
    content_type: str


class SessionOrchestrator:
    def __init__(
        self,
        *,
        registry: SessionRegistry,
        provisioning: ProvisioningClient,
        backend: BackendSessionClient,
        health_checks: bool = True,
        default_platform_name: str | None = "iOS",
        default_automation_name: str | None = "XCUITest",
    ):
        self.registry = registry
        self.provisioning = provisioning
        self.backend = backend
        self.health_checks = health_checks
        self.default_platform_name = default_platform_name
        self.default_automation_name = default_automation_name

        self._http: aiohttp.ClientSession | None = None
        self._relay_http: aiohttp.ClientSession | None = None

    @classmethod
    def from_config(
        cls, config: ProxyConfig, registry: SessionRegistry | None = None
    ) -> SessionOrchestrator:
        return cls(
            registry=registry or SessionRegistry(),
            provisioning=ProvisioningClient(
                config.provisioner_url,
                provision_path=config.provision_path,
                health_path=config.provision_health_path,
                timeout_s=config.provision_timeout_s,
                health_timeout_s=config.health_check_timeout_s,
            ),
            backend=BackendSessionClient(
                config.backend_url,
                create_timeout_s=config.backend_create_timeout_s,
                command_timeout_s=config.backend_command_timeout_s,
                health_timeout_s=config.health_check_timeout_s,
            ),
            health_checks=config.health_checks,
            default_platform_name=config.default_platform_name or None,
            default_automation_name=config.default_automation_name or None,
        )

    def _client_session(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            self._http = new_client_session()
        return self._http

    def _relay_session(self) -> aiohttp.ClientSession:
        if self._relay_http is None or self._relay_http.closed:
            self._relay_http = new_client_session(relay=True)
        return self._relay_http

    async def close(self) -> None:
        for http in (self._http, self._relay_http):
            if http is not None and not http.closed:
                await http.close()
        self._http = None
        self._relay_http = None

    def _transition(self, state: CreationState, new: CreationState) -> CreationState:
        log.debug(f"Session creation: {state.value} -> {new.value}")
        return new

    async def create_session(self, payload: object) -> CreatedSession:
        """Run the creation state machine for one new-session request.

        Any ProxyError raised carries the state the request failed in. Nothing
        is retried and nothing is rolled back on the provisioning side.
        """
        state = CreationState.RECEIVED
        try:
            params, passthrough = capabilities.negotiate(payload)
            state = self._transition(state, CreationState.CAPABILITIES_VALIDATED)

            http = self._client_session()
            if self.health_checks:
                await self.provisioning.check_health(http)
            target = await self.provisioning.provision(
                http,
                params.device_name,
                params.platform_version,
                params.application_id,
            )
            state = self._transition(state, CreationState.PROVISIONED)

            final = capabilities.compose_final(
                passthrough,
                target,
                default_platform_name=self.default_platform_name,
                default_automation_name=self.default_automation_name,
            )
            if self.health_checks:
                await self.backend.check_health(http)
            opened = await self.backend.create_session(http, final)
            state = self._transition(state, CreationState.BACKEND_SESSION_OPEN)
        except ProxyError as e:
            e.state = e.state or state.value
            self._transition(state, CreationState.FAILED)
            log.error(f"Session creation failed in state {e.state}: {e}")
            raise

        record = SessionRecord(
            session_id=opened.session_id,
            backend_url=self.backend.server_url,
            device_identifier=target.device_identifier,
            bundle_identifier=target.bundle_identifier,
        )
        self.registry.put(record)
        self._transition(state, CreationState.REGISTERED)
        log.info(
            f"Session created successfully: {record.session_id} "
            f"({record.device_identifier}, {record.bundle_identifier})"
        )
        return CreatedSession(
            record=record, body=opened.body, content_type=opened.content_type
        )

    def _require(self, session_id: str) -> SessionRecord:
        record = self.registry.get(session_id)
        if record is None:
            raise NoSuchSession(f"Session {session_id} not found")
        return record

    async def forward_command(
        self,
        session_id: str,
        method: str,
        path: str,
        body: bytes | None = None,
        headers=None,
    ) -> BackendResponse:
        record = self._require(session_id)
        return await self.backend.forward(
            self._relay_session(),
            record.backend_url,
            session_id,
            method,
            path,
            body,
            headers,
        )

    async def delete_session(self, session_id: str) -> dict:
        record = self._require(session_id)
        try:
            await self.backend.delete_session(
                self._client_session(), record.backend_url, session_id
            )
        finally:
            self.registry.remove(session_id)
        log.info(f"Session {session_id} deleted successfully")
        return {"success": True}

    def get_session(self, session_id: str) -> SessionRecord | None:
        return self.registry.get(session_id)

    def list_sessions(self) -> list[SessionRecord]:
        return self.registry.list_all()

    def reap_sessions(self, max_age: timedelta) -> list[SessionRecord]:
        if max_age < timedelta(0):
            raise InvalidArgument(f"Invalid reap threshold: {max_age}")
        return self.registry.reap(max_age)
