"""
Wire models for the facilitator HTTP API and the discovery catalog.

Field names follow the x402 JSON shape (camelCase) through pydantic aliases.
"""
from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator, model_validator
from pydantic.alias_generators import to_camel

EXACT_SCHEME = 'exact'
X402_VERSION = 1


def _integer_string(value: Any, field_name: str) -> str:
    if isinstance(value, bool):
        raise ValueError(f'{field_name} must be an integer encoded as a string')
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        try:
            int(value)
        except ValueError:
            raise ValueError(f'{field_name} must be an integer encoded as a string')
        return value
    raise ValueError(f'{field_name} must be an integer encoded as a string')


class PaymentRequirements(BaseModel):
    scheme: str
    network: str
    max_amount_required: str
    pay_to: str
    asset: str
    resource: Optional[str] = None
    description: Optional[str] = None
    mime_type: Optional[str] = None
    output_schema: Optional[Any] = None
    max_timeout_seconds: Optional[int] = None
    extra: Optional[Dict[str, Any]] = None

    _wire: Optional[Dict[str, Any]] = PrivateAttr(default=None)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
        extra='allow',
    )

    @model_validator(mode='wrap')
    @classmethod
    def keep_wire_form(cls, data, handler):
        model = handler(data)
        if isinstance(data, dict):
            model._wire = copy.deepcopy(data)
        return model

    @field_validator('max_amount_required', mode='before')
    @classmethod
    def validate_amount(cls, v):
        return _integer_string(v, 'maxAmountRequired')

    @property
    def max_amount(self) -> int:
        return int(self.max_amount_required)

    def extra_value(self, key: str) -> Optional[str]:
        value = (self.extra or {}).get(key)
        return value or None

    def to_wire(self) -> Dict[str, Any]:
        """Requirements exactly as the client sent them, so catalog reads match writes."""
        if self._wire is not None:
            return copy.deepcopy(self._wire)
        return self.model_dump(by_alias=True, exclude_unset=True)


class EIP3009Authorization(BaseModel):
    from_: str = Field(alias='from')
    to: str
    value: str
    valid_after: str
    valid_before: str
    nonce: str

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @field_validator('value', 'valid_after', 'valid_before', mode='before')
    @classmethod
    def validate_integer_fields(cls, v, info):
        return _integer_string(v, to_camel(info.field_name))


class ExactPaymentPayload(BaseModel):
    signature: str
    authorization: EIP3009Authorization


class PaymentPayload(BaseModel):
    x402_version: int = X402_VERSION
    scheme: str
    network: str
    payload: ExactPaymentPayload

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @property
    def authorization(self) -> EIP3009Authorization:
        return self.payload.authorization

    @property
    def signature(self) -> str:
        return self.payload.signature


class FacilitatorRequest(BaseModel):
    """Body of ``POST /verify`` and ``POST /settle``."""
    x402_version: int = X402_VERSION
    payment_payload: PaymentPayload
    payment_requirements: PaymentRequirements

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class VerifyResponse(BaseModel):
    is_valid: bool
    invalid_reason: Optional[str] = None
    payer: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class SettleResponse(BaseModel):
    success: bool
    transaction: str = ''
    network: str = ''
    payer: str = ''
    error_reason: Optional[str] = None

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DiscoveryResource(BaseModel):
    resource: str
    type: str = 'http'
    x402_version: int = X402_VERSION
    accepts: List[Dict[str, Any]] = Field(default_factory=list)
    last_updated: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DiscoveryPagination(BaseModel):
    limit: int
    offset: int
    total: int


class ListDiscoveryResponse(BaseModel):
    x402_version: int = X402_VERSION
    items: List[DiscoveryResource]
    pagination: DiscoveryPagination

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )
