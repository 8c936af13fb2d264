from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from photosai.config import Settings
from photosai.utils.logging import get_logger


logger = get_logger('fal')

COMPLETED_STATUSES = {'completed', 'ok', 'success'}
FAILED_STATUSES = {'error', 'failed'}


class FalError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class FalClient:
    def __init__(self, settings: Settings) -> None:
        self.queue_url = 'https://queue.fal.run'
        self.sync_url = 'https://fal.run'
        self.api_key = settings.fal_key
        self.training_app = settings.fal_training_app
        self.inference_app = settings.fal_inference_app
        self.preview_prompt = settings.preview_prompt
        self.train_webhook_url = settings.fal_webhook_url('train')
        self.image_webhook_url = settings.fal_webhook_url('image')
        self._client = httpx.AsyncClient(timeout=60)

    async def close(self) -> None:
        await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            'Authorization': f'Key {self.api_key}',
            'Content-Type': 'application/json',
        }

    async def submit(self, app_id: str, payload: Dict[str, Any], webhook_url: str = '') -> Dict[str, Any]:
        url = f'{self.queue_url}/{app_id}'
        params = {'fal_webhook': webhook_url} if webhook_url else None
        resp = await self._client.post(url, headers=self._headers(), params=params, json=payload)
        if resp.status_code >= 400:
            raise FalError(f'fal submit error {resp.status_code}: {resp.text}', resp.status_code)
        data = resp.json()
        if not self.extract_request_id(data):
            raise FalError('fal submit returned no request_id')
        return data

    async def get_result(self, app_id: str, request_id: str) -> Dict[str, Any]:
        url = f'{self.queue_url}/{app_id}/requests/{request_id}'
        resp = await self._client.get(url, headers=self._headers())
        if resp.status_code >= 400:
            raise FalError(f'fal result error {resp.status_code}: {resp.text}', resp.status_code)
        return resp.json()

    async def get_status(self, app_id: str, request_id: str) -> str:
        url = f'{self.queue_url}/{app_id}/requests/{request_id}/status'
        resp = await self._client.get(url, headers=self._headers())
        if resp.status_code >= 400:
            raise FalError(f'fal status error {resp.status_code}: {resp.text}', resp.status_code)
        data = resp.json()
        return str(data.get('status') or '').strip().lower()

    async def run(self, app_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f'{self.sync_url}/{app_id}'
        resp = await self._client.post(url, headers=self._headers(), json=payload)
        if resp.status_code >= 400:
            raise FalError(f'fal run error {resp.status_code}: {resp.text}', resp.status_code)
        return resp.json()

    async def train_model(self, zip_url: str, trigger_word: str) -> str:
        data = await self.submit(
            self.training_app,
            {'images_data_url': zip_url, 'trigger_word': trigger_word},
            webhook_url=self.train_webhook_url,
        )
        return self.extract_request_id(data)

    async def get_training_result(self, request_id: str) -> str:
        record = await self.get_result(self.training_app, request_id)
        lora_url = self.extract_lora_url(record)
        if not lora_url:
            raise FalError(f'fal training result missing weights for {request_id}')
        return lora_url

    async def get_training_status(self, request_id: str) -> str:
        return await self.get_status(self.training_app, request_id)

    async def generate_image(self, prompt: str, tensor_path: str) -> str:
        data = await self.submit(
            self.inference_app,
            self._lora_input(prompt, tensor_path),
            webhook_url=self.image_webhook_url,
        )
        return self.extract_request_id(data)

    async def generate_image_sync(self, tensor_path: str) -> str:
        record = await self.run(self.inference_app, self._lora_input(self.preview_prompt, tensor_path))
        image_url = self.extract_image_url(record)
        if not image_url:
            raise FalError('fal preview render returned no image')
        return image_url

    @staticmethod
    def _lora_input(prompt: str, tensor_path: str) -> Dict[str, Any]:
        return {
            'prompt': prompt,
            'loras': [{'path': tensor_path, 'scale': 1}],
        }

    @staticmethod
    def extract_request_id(record: Dict[str, Any]) -> str:
        for key in ('request_id', 'requestId', 'gateway_request_id'):
            value = str(record.get(key) or '').strip()
            if value:
                return value
        return ''

    @staticmethod
    def extract_lora_url(record: Dict[str, Any]) -> str:
        candidates = [record]
        payload = record.get('payload')
        if isinstance(payload, dict):
            candidates.append(payload)
        for candidate in candidates:
            lora = candidate.get('diffusers_lora_file')
            if isinstance(lora, dict):
                url = str(lora.get('url') or '').strip()
                if url:
                    return url
        return ''

    @staticmethod
    def extract_image_url(record: Dict[str, Any]) -> str:
        candidates = [record]
        payload = record.get('payload')
        if isinstance(payload, dict):
            candidates.append(payload)
        for candidate in candidates:
            images = candidate.get('images')
            if isinstance(images, list) and images:
                first = images[0]
                if isinstance(first, dict):
                    url = str(first.get('url') or '').strip()
                    if url:
                        return url
        return ''

    @staticmethod
    def is_error(record: Dict[str, Any]) -> bool:
        return str(record.get('status') or '').strip().lower() in FAILED_STATUSES

    @staticmethod
    def error_message(record: Dict[str, Any]) -> Optional[str]:
        error = record.get('error')
        if error:
            return str(error)
        payload = record.get('payload')
        if isinstance(payload, dict) and payload.get('detail'):
            return str(payload.get('detail'))
        return None
