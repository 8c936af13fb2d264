from __future__ import annotations

import hashlib
import hmac

import httpx
import pytest
import structlog

from photosai.services.auth import bearer_token, decode_token, issue_token
from photosai.services.fal_client import FalClient
from photosai.services.razorpay import RazorpayClient, RazorpayError
from photosai.utils.logging import bind_request, clear_request


SECRET = 'token-secret-0123456789abcdef0123456789'


def test_razorpay_signature_matches_hmac_formula():
    client = RazorpayClient('rzp_key', 'rzp_secret')
    expected = hmac.new(b'rzp_secret', b'order_1|pay_1', hashlib.sha256).hexdigest()

    assert RazorpayClient.compute_signature('rzp_secret', 'order_1', 'pay_1') == expected
    assert client.verify_signature(order_id='order_1', payment_id='pay_1', signature=expected)
    assert not client.verify_signature(order_id='order_1', payment_id='pay_2', signature=expected)
    assert not client.verify_signature(order_id='order_1', payment_id='pay_1', signature='')


async def test_razorpay_requires_credentials():
    client = RazorpayClient('', '')
    with pytest.raises(RazorpayError):
        await client.create_order(amount=3999, currency='INR', receipt='rcpt_1')
    with pytest.raises(RazorpayError):
        client.verify_signature(order_id='o', payment_id='p', signature='s')


def test_fal_payload_parsing():
    assert FalClient.extract_request_id({'request_id': ' abc '}) == 'abc'
    assert FalClient.extract_request_id({'gateway_request_id': 'gw'}) == 'gw'
    assert FalClient.extract_request_id({}) == ''

    training = {'payload': {'diffusers_lora_file': {'url': 'https://fal.media/w.safetensors'}}}
    assert FalClient.extract_lora_url(training) == 'https://fal.media/w.safetensors'
    assert FalClient.extract_lora_url({'diffusers_lora_file': {'url': 'direct'}}) == 'direct'

    image = {'payload': {'images': [{'url': 'https://fal.media/a.png'}]}}
    assert FalClient.extract_image_url(image) == 'https://fal.media/a.png'
    assert FalClient.extract_image_url({'images': []}) == ''

    assert FalClient.is_error({'status': 'ERROR'})
    assert not FalClient.is_error({'status': 'OK'})
    assert FalClient.error_message({'payload': {'detail': 'nsfw'}}) == 'nsfw'


async def test_fal_submit_sends_webhook_and_key(settings):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={'request_id': 'req-1', 'status': 'IN_QUEUE'})

    settings.fal_webhook_base_url = 'https://api.photos.dev/'
    client = FalClient(settings)
    await client.close()
    client._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    try:
        request_id = await client.train_model('https://files.photos.dev/a.zip', 'ava')
    finally:
        await client.close()

    assert request_id == 'req-1'
    [request] = seen
    assert request.url.host == 'queue.fal.run'
    assert request.url.path == '/fal-ai/flux-lora-fast-training'
    assert request.url.params['fal_webhook'] == 'https://api.photos.dev/fal-ai/webhook/train'
    assert request.headers['authorization'] == 'Key fal-test-key'


def test_tokens_round_trip_with_secret():
    token = issue_token('user-1', SECRET)
    assert decode_token(token, SECRET) == 'user-1'
    assert decode_token(token, 'another-secret-0123456789abcdef012345') is None
    assert decode_token('garbage', SECRET) is None


def test_bearer_token_parsing():
    assert bearer_token('Bearer abc') == 'abc'
    assert bearer_token('bearer  abc ') == 'abc'
    assert bearer_token('Basic abc') is None
    assert bearer_token('Bearer') is None
    assert bearer_token(None) is None


def test_request_context_binding():
    request_id = bind_request(None, path='/health')
    try:
        context = structlog.contextvars.get_contextvars()
        assert context['request_id'] == request_id
        assert context['path'] == '/health'
    finally:
        clear_request()
    assert structlog.contextvars.get_contextvars() == {}
    assert bind_request('  given-id ') == 'given-id'
    clear_request()
