from __future__ import annotations

from typing import Optional, Tuple

from django.conf import settings
from django.http import HttpResponseRedirect
from django.urls import reverse
from loguru import logger
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.exceptions import ParseError
from rest_framework.response import Response
from rest_framework.views import APIView

from facilitator.background import get_background_runner
from facilitator.discovery import DiscoveryCatalog
from facilitator.errors import InvalidReason, X402FacilitatorValidationError
from facilitator.middleware import get_request_id
from facilitator.networks import get_network_registry
from facilitator.nonces import NonceLedger
from facilitator.settlement import SettlementOrchestrator, SettlementResult
from facilitator.storage import DatabaseKeyValueStore, KeyValueStore
from facilitator.types import (
    EXACT_SCHEME,
    X402_VERSION,
    FacilitatorRequest,
    PaymentPayload,
    PaymentRequirements,
    SettleResponse,
    VerifyResponse,
)
from facilitator.validation import VerificationResult, verify_payment

SERVICE_NAME = 'x402 Facilitator'
SERVICE_VERSION = '1.0.0'


def get_store() -> KeyValueStore:
    return DatabaseKeyValueStore()


def _payer_from_raw(request_data) -> Optional[str]:
    try:
        payer = request_data['paymentPayload']['payload']['authorization']['from']
    except (KeyError, TypeError):
        return None
    return payer if isinstance(payer, str) else None


def _parse_payload(request) -> Tuple[PaymentPayload, PaymentRequirements]:
    try:
        request_data = request.data
    except ParseError as exc:
        raise X402FacilitatorValidationError(InvalidReason.INVALID_PAYLOAD) from exc
    if not isinstance(request_data, dict) or not request_data.get('paymentPayload') \
            or not request_data.get('paymentRequirements'):
        raise X402FacilitatorValidationError(InvalidReason.MISSING_PAYLOAD_OR_REQUIREMENTS)
    try:
        parsed = FacilitatorRequest.model_validate(request_data)
    except PydanticValidationError as exc:
        logger.debug('pydantic validation failed: {}', exc)
        raise X402FacilitatorValidationError(
            InvalidReason.INVALID_PAYLOAD, payer=_payer_from_raw(request_data)) from exc
    return parsed.payment_payload, parsed.payment_requirements


def _verify_body(result: VerificationResult) -> dict:
    return VerifyResponse(
        is_valid=result.is_valid,
        invalid_reason=str(result.invalid_reason) if result.invalid_reason else None,
        payer=result.payer,
    ).model_dump(by_alias=True, exclude_none=True)


def _settle_body(result: SettlementResult) -> dict:
    return SettleResponse(
        success=result.success,
        transaction=result.transaction_hash,
        network=result.network,
        payer=result.payer,
        error_reason=result.error_reason,
    ).model_dump(by_alias=True, exclude_none=True)


def _int_param(request, name: str) -> Optional[int]:
    try:
        return int(request.query_params.get(name))
    except (TypeError, ValueError):
        return None


class X402CapabilitiesView(APIView):
    """Service description: endpoints, networks and accepted tokens."""

    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        registry = get_network_registry()
        return Response(
            {
                'name': SERVICE_NAME,
                'version': SERVICE_VERSION,
                'status': 'healthy',
                'endpoints': {
                    'verify': '/verify',
                    'settle': '/settle',
                    'discovery': '/discovery/resources',
                    'list': '/list',
                },
                'networks': [config.as_dict() for config in registry.values()],
                'schemes': [EXACT_SCHEME],
            },
            status=status.HTTP_200_OK,
        )


class X402SupportedView(APIView):
    """
    List supported payment kinds.

    { "kinds": [ { "x402Version": 1, "scheme": "exact", "network": "skale-base-sepolia" } ] }
    """

    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        kinds = [
            {'x402Version': X402_VERSION, 'scheme': EXACT_SCHEME, 'network': network}
            for network in get_network_registry()
        ]
        return Response({'kinds': kinds}, status=status.HTTP_200_OK)


class X402VerifyView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs):
        request_id = get_request_id(request)
        logger.info('[{}] Processing verify request', request_id)

        try:
            payload, requirements = _parse_payload(request)
            store = get_store()
            result = verify_payment(
                payload,
                requirements,
                registry=get_network_registry(),
                ledger=NonceLedger(store),
                request_id=request_id,
                rpc_timeout=getattr(settings, 'X402_RPC_TIMEOUT_SECONDS', 5),
            )
        except X402FacilitatorValidationError as exc:
            logger.info('[{}] x402 verification failed: {}', request_id, exc.reason)
            result = VerificationResult(
                is_valid=False, payer=exc.payer, invalid_reason=exc.reason)
            return Response(_verify_body(result), status=status.HTTP_200_OK)
        except Exception:
            logger.exception('[{}] x402 verification error', request_id)
            return Response(
                {'isValid': False, 'invalidReason': str(InvalidReason.INTERNAL_ERROR)},
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

        if not result.is_valid:
            logger.info('[{}] x402 verification failed: {}', request_id, result.invalid_reason)
            return Response(_verify_body(result), status=status.HTTP_200_OK)

        get_background_runner().submit(
            DiscoveryCatalog(store).register,
            requirements, payload.network, request_id,
            label='register_seller',
        )
        logger.debug('[{}] x402 authorization verified: payer={} network={}',
                     request_id, result.payer, payload.network)
        return Response(_verify_body(result), status=status.HTTP_200_OK)


class X402SettleView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def post(self, request, *args, **kwargs) -> Response:
        request_id = get_request_id(request)
        logger.info('[{}] Processing settle request', request_id)

        try:
            payload, requirements = _parse_payload(request)
            store = get_store()
            orchestrator = SettlementOrchestrator.from_settings(
                get_network_registry(),
                NonceLedger(store),
                catalog=DiscoveryCatalog(store),
                runner=get_background_runner(),
            )
            result = orchestrator.settle(payload, requirements, request_id=request_id)
        except X402FacilitatorValidationError as exc:
            logger.info('[{}] x402 settlement validation failed: {}', request_id, exc.reason)
            result = SettlementResult(
                success=False, payer=exc.payer or '', error_reason=str(exc.reason))
            return Response(_settle_body(result), status=status.HTTP_200_OK)
        except Exception:
            logger.exception('[{}] x402 settlement error', request_id)
            result = SettlementResult(
                success=False, error_reason=str(InvalidReason.INTERNAL_ERROR))
            return Response(_settle_body(result), status=status.HTTP_500_INTERNAL_SERVER_ERROR)

        return Response(_settle_body(result), status=status.HTTP_200_OK)


class DiscoveryResourcesView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        request_id = get_request_id(request)
        logger.info('[{}] Processing discovery list request', request_id)
        try:
            page = DiscoveryCatalog(get_store()).list_resources(
                limit=_int_param(request, 'limit'),
                offset=_int_param(request, 'offset'),
                request_id=request_id,
            )
        except Exception:
            logger.exception('[{}] Discovery list error', request_id)
            return Response(
                {
                    'x402Version': X402_VERSION,
                    'items': [],
                    'pagination': {'limit': 0, 'offset': 0, 'total': 0},
                },
                status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )
        return Response(page.model_dump(by_alias=True), status=status.HTTP_200_OK)


class DiscoveryListAliasView(APIView):
    authentication_classes: list = []
    permission_classes: list = []

    def get(self, request, *args, **kwargs):
        location = reverse('facilitator:discovery-resources')
        query = request.META.get('QUERY_STRING', '')
        if query:
            location = f'{location}?{query}'
        logger.debug('[{}] Redirecting /list to {}', get_request_id(request), location)
        return HttpResponseRedirect(location)
