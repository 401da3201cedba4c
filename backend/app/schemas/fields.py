"""
LoveCakes Backend — Reusable Validation Field Types
=====================================================

What:  Annotated field types shared by request schemas.
How:   Each alias bundles a base type with Pydantic constraints, so a request
       model reads like the stored procedure's parameter list:

           class CreateProductRequest(BaseModel):
               name: Name
               description: NullableDescription = None
               price: Price
               idCategory: ForeignKey
               active: Bit = 1
"""

from typing import Annotated, Optional

from pydantic import AwareDatetime, EmailStr, Field

# 0 or 1, stored as BIT
Bit = Annotated[int, Field(ge=0, le=1)]

# Positive integer key
ForeignKey = Annotated[int, Field(gt=0)]
NullableForeignKey = Optional[ForeignKey]

NonEmptyString = Annotated[str, Field(min_length=1)]
NullableString = Optional[str]

Name = Annotated[str, Field(min_length=1, max_length=200)]
NullableDescription = Optional[Annotated[str, Field(max_length=500)]]

# ISO 8601 with an offset, e.g. "2024-01-15T12:00:00Z"
DateString = AwareDatetime

Email = EmailStr

Price = Annotated[float, Field(gt=0)]
NullablePrice = Optional[Price]
