"""Execution Dispatch Bridge.

Runs one endpoint invocation per inbound request in a fresh OS process
(the execution unit). The request descriptor is the unit's sole input and
a single :class:`Reply` is its sole output; both are copied by value over
a one-way pipe. The unit is torn down after its reply, its failure, or the
deadline, whichever comes first.

The bridge knows nothing about what an endpoint does. It only checks the
endpoint name against the unit's closed endpoint set before any process
is created.
"""

from __future__ import annotations

import asyncio
import logging
import multiprocessing
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from multiprocessing.connection import Connection
from typing import Any, Protocol

from samlgate.core.config import GatewayConfig
from samlgate.core.errors import DispatchTimeout, ExecutionFault, GatewayError, UnknownEndpoint
from samlgate.core.logging import configure_logging

logger = logging.getLogger(__name__)

# Seconds to wait for a terminated unit before killing it
TERMINATE_GRACE = 2.0


@dataclass(frozen=True)
class RequestDescriptor:
    """Everything an execution unit may know about its request."""

    settings: GatewayConfig
    service_name: str
    debug: bool = False
    headers: Mapping[str, str] = field(default_factory=dict)
    body: Mapping[str, str] = field(default_factory=dict)
    query: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Reply:
    """The single message sent by a unit: a value or an error."""

    value: Any = None
    error: GatewayError | None = None


class ExecutionUnit(Protocol):
    """A class whose instances serve one request in an isolated process."""

    endpoints: type[Enum]

    def __init__(self, request: RequestDescriptor) -> None: ...

    def run(self, endpoint: Enum) -> Any: ...


def _fault(error: Exception, debug: bool) -> ExecutionFault:
    """ExecutionFault for an error outside the taxonomy, detailed only in debug mode."""
    if debug:
        return ExecutionFault(f"{type(error).__name__}: {error}")
    return ExecutionFault()


def _unit_main(
    unit_cls: type[ExecutionUnit],
    endpoint: Enum,
    request: RequestDescriptor,
    conn: Connection,
) -> None:
    """Entry point of an execution unit process."""
    configure_logging(debug=request.debug)
    unit_logger = logging.getLogger(f"{__name__}.unit")
    try:
        try:
            reply = Reply(value=unit_cls(request).run(endpoint))
        except GatewayError as e:
            reply = Reply(error=e)
        except Exception as e:
            unit_logger.exception(f"Unhandled fault in {endpoint.value} endpoint")
            reply = Reply(error=_fault(e, request.debug))
        conn.send(reply)
    finally:
        conn.close()


class DispatchBridge:
    """Generic named-endpoint invoker over a process boundary.

    Args:
        unit_cls: Execution unit class; its ``endpoints`` enum is the closed
            set of accepted endpoint names.
        timeout: Seconds to wait for the reply. ``None`` waits forever.
        start_method: multiprocessing start method for units.
    """

    def __init__(
        self,
        unit_cls: type[ExecutionUnit],
        timeout: float | None = 30.0,
        start_method: str = "spawn",
    ) -> None:
        self.unit_cls = unit_cls
        self.timeout = timeout
        self._context = multiprocessing.get_context(start_method)

    def check(self, endpoint: str | Enum) -> Enum:
        """Resolve an endpoint name against the unit's closed set.

        Raises:
            UnknownEndpoint: If the name is not an endpoint of the unit.
        """
        endpoints = self.unit_cls.endpoints
        if isinstance(endpoint, endpoints):
            return endpoint
        try:
            return endpoints(endpoint)
        except ValueError:
            raise UnknownEndpoint(
                f'Unknown endpoint: "{endpoint}". Not an endpoint of {self.unit_cls.__name__}.'
            ) from None

    async def dispatch(self, endpoint: str | Enum, request: RequestDescriptor) -> Any:
        """Run ``endpoint`` in a fresh unit and return its reply value.

        Raises:
            UnknownEndpoint: Before any unit is created, for unknown names.
            DispatchTimeout: If no reply arrives before the deadline.
            ExecutionFault: If the unit fails to start or exits without a
                readable reply.
            GatewayError: Whatever error the unit replied with.
        """
        resolved = self.check(endpoint)

        parent_conn, child_conn = self._context.Pipe(duplex=False)
        process = self._context.Process(
            target=_unit_main,
            args=(self.unit_cls, resolved, request, child_conn),
            name=f"{request.service_name}-{resolved.value}",
            daemon=True,
        )

        try:
            try:
                process.start()
            except Exception as e:
                logger.exception(f"Unable to start unit for {resolved.value} endpoint")
                raise _fault(e, request.debug) from e
            # The child owns the sending end now
            child_conn.close()
            logger.debug(f"{resolved.value} endpoint dispatched to unit pid={process.pid}")

            ready = await asyncio.to_thread(parent_conn.poll, self.timeout)
            if not ready:
                logger.error(f"{resolved.value} endpoint timed out after {self.timeout}s")
                process.kill()
                raise DispatchTimeout(
                    f"The {resolved.value} endpoint did not reply within {self.timeout} seconds."
                )

            try:
                reply: Reply = parent_conn.recv()
            except EOFError:
                raise ExecutionFault(
                    f"The {resolved.value} endpoint exited with code {process.exitcode} "
                    "without replying."
                ) from None
            except Exception as e:
                logger.exception(f"Unreadable reply from {resolved.value} endpoint")
                raise _fault(e, request.debug) from e
        finally:
            child_conn.close()
            parent_conn.close()
            # join() blocks, keep it off the event loop
            await asyncio.to_thread(self._teardown, process, resolved.value)

        if reply.error is not None:
            logger.info(f"{resolved.value} endpoint failed: {type(reply.error).__name__}")
            raise reply.error
        return reply.value

    @staticmethod
    def _teardown(process: multiprocessing.process.BaseProcess, name: str) -> None:
        if process.pid is None:
            return
        if process.is_alive():
            process.terminate()
        process.join(TERMINATE_GRACE)
        if process.is_alive():
            process.kill()
            process.join()
        process.close()
        logger.debug(f"{name} endpoint terminated")
