"""
pwauth/schemas.py

Expected claim shapes per operation.

Each operation validates a normalized view {"header": ..., "payload": ...}
of the decoded assertion. Unknown payload claims are tolerated (clients may
add more); the outer envelope is closed.

Claim fields use strict types: values must already have the JSON type the
claim requires. "1700000000" is not an iat and true is not 1.
"""

from typing import Annotated, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, ValidationError


# JSON number >= 0, integer or not
NonNegativeNumber = Union[
    Annotated[StrictInt, Field(ge=0)],
    Annotated[StrictFloat, Field(ge=0)],
]


class PublicJwk(BaseModel):
    kty: Literal["EC"]
    crv: Literal["P-256"]
    x: StrictStr
    y: StrictStr


class AssertionHeader(BaseModel):
    alg: Literal["ES256"]
    jwk: PublicJwk


class Name(BaseModel):
    given: StrictStr
    family: StrictStr


class RegistrationClaims(BaseModel):
    sub: StrictStr
    iat: NonNegativeNumber
    nonce: StrictStr
    name: Name
    email: StrictStr


class LoginClaims(BaseModel):
    sub: StrictStr
    iat: NonNegativeNumber
    nonce: StrictStr


class RegistrationAssertion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    header: AssertionHeader
    payload: RegistrationClaims


class LoginAssertion(BaseModel):
    model_config = ConfigDict(extra="forbid")

    header: AssertionHeader
    payload: LoginClaims


def format_validation_errors(exc: ValidationError) -> List[str]:
    """Flatten pydantic errors into "payload.name.given: Field required" strings."""
    out: List[str] = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()))
        out.append(f"{loc}: {err.get('msg', 'invalid')}")
    return out
