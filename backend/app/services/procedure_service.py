"""
LoveCakes Backend — Stored Procedure Gateway
==============================================

What:  Runs a named stored procedure with bound parameters and shapes its
       result sets into the form the caller asked for.
How:   Builds `EXEC [schema].[proc] @name = ?, ...`, runs it on a pooled
       connection (or on the caller's transaction), drains every result set
       from the driver cursor, and returns an InvocationResult.
Who:   Called by route handlers through the `get_gateway` dependency.
When:  Once per stored-procedure call; many calls run concurrently over the
       shared pool.

Invocation Flow:
    invoke(proc, params, expected_return, transaction?, names?, timeout?)
      1. Validate the procedure and parameter names, build the statement
      2. transaction given? → run on it (pool untouched, caller commits)
         otherwise         → acquire pool, check out a connection inside
                             engine.begin() (commit on success, rollback on
                             failure, always returned to the pool)
      3. Drain every result set (row-count-only sets are skipped)
      4. Shape: NONE → NoResult, SINGLE → SingleRow,
                MULTI → ResultSets | NamedResultSets

Failure Handling:
    Pool cannot be built  → DatabaseConnectionError (from DatabasePool)
    Deadline exceeded     → ProcedureTimeoutError
    Driver/DB failure     → DatabaseRequestError (original exception chained)
    Too many names        → ResultShapeError
    Task cancelled        → asyncio.CancelledError, unchanged
    No retries: retrying is the caller's decision.

Parameter Binding:
    Parameters are bound by name in the EXEC statement, so the order in
    which the caller's mapping enumerates does not matter. Names are emitted
    in sorted order, making the statement text deterministic for a given set
    of names. Values keep their Python type; the ODBC driver maps int, str,
    bool (bit), date/time, Decimal, float, bytes and None.
"""

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncConnection

from app.database import DatabasePool
from app.exceptions import (
    DatabaseConnectionError,
    DatabaseRequestError,
    ProcedureTimeoutError,
    ResultShapeError,
)
from app.schemas.procedure import (
    ExpectedReturn,
    InvocationResult,
    NamedResultSets,
    NoResult,
    RecordSet,
    ResultSets,
    SingleRow,
)
from app.services.redaction import RedactionPolicy

logger = logging.getLogger(__name__)

# Unquoted identifier, or a [bracketed] one without brackets inside
_NAME_PART = re.compile(r"^(?:\[([^\[\]]+)\]|([A-Za-z_#][A-Za-z0-9_@$#]*))$")
_PARAMETER_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_NON_SCALAR = (list, tuple, dict, set, frozenset)

# Sentinel: "use the gateway's default timeout"
_DEFAULT_TIMEOUT: Any = object()


# ══════════════════════════════════════════════════════════════════════════
# Statement Building
# ══════════════════════════════════════════════════════════════════════════

def quote_procedure_name(procedure: str) -> str:
    """
    Bracket-quote a one- to three-part procedure name.

    Examples:
        "GetProductById"           → "[GetProductById]"
        "dbo.GetProductById"       → "[dbo].[GetProductById]"
        "[sales].[Order Summary]"  → "[sales].[Order Summary]"

    Raises:
        ValueError: Empty name or a part that is not a valid identifier.
    """
    if not isinstance(procedure, str) or not procedure.strip():
        raise ValueError("Stored procedure name must be a non-empty string")

    parts = procedure.strip().split(".")
    if len(parts) > 3:
        raise ValueError(f"Invalid stored procedure name: {procedure!r}")

    quoted = []
    for part in parts:
        match = _NAME_PART.match(part)
        if match is None:
            raise ValueError(f"Invalid stored procedure name: {procedure!r}")
        quoted.append(f"[{match.group(1) or match.group(2)}]")
    return ".".join(quoted)


def build_exec_statement(
    procedure: str, parameters: Mapping[str, Any]
) -> Tuple[str, List[Any]]:
    """
    Build the EXEC statement and its positional values.

    Returns:
        ("EXEC [dbo].[GetOrders] @idAccount = ?, @status = ?", [1, "open"])

    Raises:
        ValueError: Invalid procedure/parameter name, the same parameter given
            twice (e.g. "id" and "@ID"), or a non-scalar value.
    """
    target = quote_procedure_name(procedure)

    bound: Dict[str, Any] = {}
    seen: Dict[str, str] = {}
    for name, value in parameters.items():
        if not isinstance(name, str):
            raise ValueError(f"Parameter names must be strings, got {type(name).__name__}")
        bare = name[1:] if name.startswith("@") else name
        if not _PARAMETER_NAME.match(bare):
            raise ValueError(f"Invalid parameter name: {name!r}")
        key = bare.lower()
        if key in seen:
            raise ValueError(f"Parameter {name!r} duplicates {seen[key]!r}")
        if isinstance(value, _NON_SCALAR):
            raise ValueError(
                f"Parameter {name!r} must be a scalar value, got {type(value).__name__}"
            )
        seen[key] = name
        bound[bare] = value

    names = sorted(bound, key=str.lower)
    if not names:
        return f"EXEC {target}", []
    assignments = ", ".join(f"@{name} = ?" for name in names)
    return f"EXEC {target} {assignments}", [bound[name] for name in names]


# ══════════════════════════════════════════════════════════════════════════
# Execution & Result Shaping
# ══════════════════════════════════════════════════════════════════════════

async def fetch_result_sets(
    connection: AsyncConnection, statement: str, values: Sequence[Any]
) -> List[RecordSet]:
    """
    Execute `statement` and return every row-producing result set.

    How:   Works on the aioodbc driver cursor directly; SQLAlchemy's result
           object only exposes the first result set. Every set is drained so
           that the procedure runs to completion and errors raised after the
           first SELECT still surface. Sets without a column description are
           row counts from DML statements and are skipped.
    """
    raw = await connection.get_raw_connection()
    result_sets: List[RecordSet] = []
    async with raw.driver_connection.cursor() as cursor:
        await cursor.execute(statement, *values)
        while True:
            if cursor.description is not None:
                columns = [column[0] for column in cursor.description]
                rows = await cursor.fetchall()
                result_sets.append([dict(zip(columns, row)) for row in rows])
            if not await cursor.nextset():
                break
    return result_sets


def shape_result(
    procedure: str,
    result_sets: List[RecordSet],
    expected_return: ExpectedReturn,
    result_set_names: Optional[List[str]] = None,
    parameters: Optional[Mapping[str, Any]] = None,
) -> InvocationResult:
    """
    Convert drained result sets into the shape named by `expected_return`.

    The selector is the caller's assertion and is not checked against what
    the procedure returned: SINGLE ignores everything after the first row of
    the first set, NONE ignores everything.

    Raises:
        ResultShapeError: More names than result sets.
    """
    if expected_return is ExpectedReturn.NONE:
        return NoResult()

    if expected_return is ExpectedReturn.SINGLE:
        first = result_sets[0] if result_sets else []
        return SingleRow(row=first[0] if first else None)

    if result_set_names:
        if len(result_set_names) > len(result_sets):
            logger.error(
                "Stored procedure %s returned %d result set(s) but %d names were given: %s",
                procedure,
                len(result_sets),
                len(result_set_names),
                result_set_names,
            )
            raise ResultShapeError(
                procedure=procedure,
                parameters=parameters,
                context={
                    "result_set_names": list(result_set_names),
                    "result_set_count": len(result_sets),
                },
            )
        # zip stops at the shorter list: extra result sets are dropped
        return NamedResultSets(result_sets=dict(zip(result_set_names, result_sets)))

    return ResultSets(result_sets=result_sets)


# ══════════════════════════════════════════════════════════════════════════
# Gateway
# ══════════════════════════════════════════════════════════════════════════

class ProcedureGateway:
    """
    The single entry point for running stored procedures.

    Attributes:
        pool:             DatabasePool the gateway borrows connections from.
        redaction:        Policy applied to parameters before logging.
        default_timeout:  Deadline in seconds used when invoke() gets no
                          explicit timeout; None means no deadline.
    """

    def __init__(
        self,
        pool: DatabasePool,
        redaction: Optional[RedactionPolicy] = None,
        default_timeout: Optional[float] = None,
    ):
        self.pool = pool
        self.redaction = redaction or RedactionPolicy()
        self.default_timeout = default_timeout

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """
        Open a unit of work that several invoke() calls can share.

        Commits when the block exits normally, rolls back when it raises.

        Example:
            async with gateway.transaction() as tx:
                order = await gateway.invoke("CreateOrder", {...}, ExpectedReturn.SINGLE, tx)
                await gateway.invoke("AddOrderItem", {...}, ExpectedReturn.NONE, tx)
        """
        engine = await self.pool.acquire()
        async with engine.begin() as connection:
            yield connection

    async def invoke(
        self,
        procedure: str,
        parameters: Optional[Mapping[str, Any]] = None,
        expected_return: ExpectedReturn = ExpectedReturn.NONE,
        transaction: Optional[AsyncConnection] = None,
        result_set_names: Optional[Sequence[str]] = None,
        *,
        timeout: Optional[float] = _DEFAULT_TIMEOUT,
    ) -> InvocationResult:
        """
        Run `procedure` and return its rows in the requested shape.

        Args:
            procedure:        Stored procedure name, optionally schema-qualified.
            parameters:       Parameter name → scalar value.
            expected_return:  NONE, SINGLE or MULTI.
            transaction:      Connection from transaction(); the pool is not
                              used and the caller owns commit/rollback.
            result_set_names: Names for the result sets (MULTI only).
            timeout:          Seconds for checkout plus execution; None for no
                              deadline. Defaults to `default_timeout`.

        Raises:
            ValueError:              Invalid names or non-scalar values.
            DatabaseConnectionError: The pool could not be built.
            DatabaseRequestError:    The procedure failed.
            ResultShapeError:        More names than result sets.
            ProcedureTimeoutError:   The deadline passed.
        """
        expected_return = ExpectedReturn(expected_return)
        parameters = parameters or {}
        statement, values = build_exec_statement(procedure, parameters)
        names = self._check_result_set_names(procedure, expected_return, result_set_names)
        deadline = self.default_timeout if timeout is _DEFAULT_TIMEOUT else timeout
        redacted = self.redaction.redact(parameters)

        started = time.perf_counter()
        try:
            if deadline is None:
                result_sets = await self._execute(statement, values, transaction)
            else:
                result_sets = await asyncio.wait_for(
                    self._execute(statement, values, transaction), timeout=deadline
                )
        except asyncio.TimeoutError:
            logger.error(
                "Stored procedure %s timed out after %.1fs | parameters=%s",
                procedure,
                deadline,
                redacted,
            )
            raise ProcedureTimeoutError(procedure=procedure, timeout=deadline) from None
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(
                "Stored procedure %s failed: %s | parameters=%s",
                procedure,
                str(e),
                redacted,
            )
            raise DatabaseRequestError(
                procedure=procedure,
                parameters=redacted,
                context={"error_type": type(e).__name__},
            ) from e

        logger.debug(
            "Stored procedure %s returned %d result set(s) in %.1fms",
            procedure,
            len(result_sets),
            (time.perf_counter() - started) * 1000,
        )
        return shape_result(procedure, result_sets, expected_return, names, redacted)

    async def _execute(
        self,
        statement: str,
        values: List[Any],
        transaction: Optional[AsyncConnection],
    ) -> List[RecordSet]:
        if transaction is not None:
            return await self._run_on(transaction, statement, values)

        engine = await self.pool.acquire()
        async with engine.begin() as connection:
            return await self._run_on(connection, statement, values)

    @staticmethod
    async def _run_on(
        connection: AsyncConnection, statement: str, values: List[Any]
    ) -> List[RecordSet]:
        try:
            return await fetch_result_sets(connection, statement, values)
        except asyncio.CancelledError:
            # The statement may still be running on this connection:
            # close it instead of handing it back to the pool
            await connection.invalidate()
            raise

    @staticmethod
    def _check_result_set_names(
        procedure: str,
        expected_return: ExpectedReturn,
        result_set_names: Optional[Sequence[str]],
    ) -> Optional[List[str]]:
        if not result_set_names:
            return None
        if isinstance(result_set_names, str):
            raise ValueError("result_set_names must be a sequence of names, not a string")
        names = list(result_set_names)
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate result set names: {names}")
        if expected_return is not ExpectedReturn.MULTI:
            logger.debug(
                "Ignoring result set names for %s (expected_return=%s)",
                procedure,
                expected_return.value,
            )
            return None
        return names


# ── FastAPI Dependency ────────────────────────────────────────────────────
def get_gateway(request: Request) -> ProcedureGateway:
    """
    FastAPI dependency returning the application's gateway.

    Example usage in a route:
        @router.get("/product/{id}")
        async def get_product(id: int, gateway: ProcedureGateway = Depends(get_gateway)):
            result = await gateway.invoke("GetProductById", {"id": id}, ExpectedReturn.SINGLE)
    """
    return request.app.state.gateway
