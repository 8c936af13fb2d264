from __future__ import annotations

from typing import Any, Dict, List, Protocol


class InferenceProvider(Protocol):
    async def train_model(self, zip_url: str, trigger_word: str) -> str:
        ...

    async def get_training_result(self, request_id: str) -> str:
        ...

    async def get_training_status(self, request_id: str) -> str:
        ...

    async def generate_image(self, prompt: str, tensor_path: str) -> str:
        ...

    async def generate_image_sync(self, tensor_path: str) -> str:
        ...


class PaymentProvider(Protocol):
    key_id: str

    async def create_order(
        self,
        *,
        amount: int,
        currency: str,
        receipt: str,
        notes: Dict[str, str] | None = None,
    ) -> Dict[str, Any]:
        ...

    async def fetch_order(self, order_id: str) -> Dict[str, Any]:
        ...

    async def fetch_order_payments(self, order_id: str) -> List[Dict[str, Any]]:
        ...

    def verify_signature(self, *, order_id: str, payment_id: str, signature: str) -> bool:
        ...
