"""
LoveCakes Backend — CRUD Request Validation
=============================================

What:  Validates the inputs of a CRUD handler and pairs them with the
       caller's authenticated identity.
How:   Merges path params, body and query into one mapping (later sources
       win: params < body < query), validates it with a Pydantic model, and
       returns a ValidatedRequest carrying the Credential it was given.
Who:   Called by internal (authenticated) route handlers before they invoke
       stored procedures.

The controller never invents an identity: the Credential is a required input
supplied by the authentication layer, and a missing one is an
UnauthorizedError.

Example:
    products = CrudController([SecurityRule(securable="PRODUCT", permission=Permission.READ)])

    @router.get("/product/{id}")
    async def get_product(request: Request, id: int,
                          credential: Credential = Depends(get_credential)):
        validated = await products.read(request, ProductKey, credential)
        ...
"""

import json
import logging
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar, Union

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from app.exceptions import UnauthorizedError, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class Permission(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SecurityRule(BaseModel):
    """One securable and the permission an operation on it requires."""

    model_config = ConfigDict(frozen=True)

    securable: str = Field(min_length=1)
    permission: Permission


class Credential(BaseModel):
    """
    Authenticated identity of the caller. Opaque to the controller: it is
    passed through unchanged so handlers can forward it to procedures.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id_account: int = Field(gt=0, alias="idAccount")
    id_user: int = Field(gt=0, alias="idUser")


class ValidatedRequest(BaseModel):
    """Result of a successful CRUD validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    credential: Credential
    params: Any
    permission: Permission
    securables: List[str] = Field(default_factory=list)


def format_validation_errors(exc: Union[PydanticValidationError, RequestValidationError]) -> List[Dict[str, Any]]:
    """Flatten Pydantic errors into the `details` list of the error envelope."""
    return [
        {
            "field": ".".join(str(part) for part in error["loc"]) or "__root__",
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]


class CrudController:
    """
    Validation entry point for create/read/update/delete handlers.

    Attributes:
        security_config: Securables this controller guards, with the
                         permission each operation requires.
    """

    def __init__(self, security_config: List[SecurityRule]):
        self.security_config = list(security_config)

    async def create(self, request: Request, schema: Type[M], credential: Optional[Credential]) -> ValidatedRequest:
        return await self._validate_request(request, schema, credential, Permission.CREATE)

    async def read(self, request: Request, schema: Type[M], credential: Optional[Credential]) -> ValidatedRequest:
        return await self._validate_request(request, schema, credential, Permission.READ)

    async def update(self, request: Request, schema: Type[M], credential: Optional[Credential]) -> ValidatedRequest:
        return await self._validate_request(request, schema, credential, Permission.UPDATE)

    async def delete(self, request: Request, schema: Type[M], credential: Optional[Credential]) -> ValidatedRequest:
        return await self._validate_request(request, schema, credential, Permission.DELETE)

    def validate(
        self,
        data: Mapping[str, Any],
        schema: Type[M],
        credential: Optional[Credential],
        permission: Permission,
    ) -> ValidatedRequest:
        """
        Validate already-merged request data.

        Raises:
            UnauthorizedError: No credential was supplied.
            ValidationError:   `data` does not satisfy `schema`.
        """
        if credential is None:
            raise UnauthorizedError(message="Authenticated identity is required")

        try:
            params = schema.model_validate(dict(data))
        except PydanticValidationError as e:
            errors = format_validation_errors(e)
            logger.info(
                "Validation failed for %s (%s): %d error(s)",
                schema.__name__,
                permission.value,
                len(errors),
            )
            raise ValidationError(errors=errors)

        return ValidatedRequest(
            credential=credential,
            params=params,
            permission=permission,
            securables=[
                rule.securable for rule in self.security_config if rule.permission is permission
            ],
        )

    async def _validate_request(
        self,
        request: Request,
        schema: Type[M],
        credential: Optional[Credential],
        permission: Permission,
    ) -> ValidatedRequest:
        data: Dict[str, Any] = dict(request.path_params)
        data.update(await _read_body(request))
        data.update(request.query_params)
        return self.validate(data, schema, credential, permission)


async def _read_body(request: Request) -> Dict[str, Any]:
    """Return the JSON object body, {} for an empty body; anything else is a ValidationError."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError(
            message="Request body is not valid JSON",
            errors=[{"field": "body", "message": "Invalid JSON", "type": "json_invalid"}],
        )
    if not isinstance(body, dict):
        raise ValidationError(
            message="Request body must be a JSON object",
            errors=[{"field": "body", "message": "Expected an object", "type": "dict_type"}],
        )
    return body
