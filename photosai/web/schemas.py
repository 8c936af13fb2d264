from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Signup(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)
    name: str = Field(min_length=1)


class Signin(BaseModel):
    email: EmailStr
    password: str = Field(min_length=8)


class TrainModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: Literal['Man', 'Woman', 'Other']
    age: int
    ethnicity: Literal[
        'White',
        'Black',
        'Asian American',
        'East Asian',
        'South_Asian',
        'Middle_Eastern',
        'Pacific',
        'Hispanic',
    ]
    eye_color: Literal['Brown', 'Blue', 'Hazel', 'Gray'] = Field(alias='eyeColor')
    bald: bool
    zip_url: str = Field(alias='zipUrl')


class GenerateImage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    prompt: str = Field(min_length=1)
    model_id: str = Field(alias='modelId')


class GenerateImageFromPack(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())

    model_id: str = Field(alias='modelId')
    pack_id: str = Field(alias='packId')


class CreatePayment(BaseModel):
    plan: str = Field(min_length=1)
    method: str = Field(min_length=1)


class VerifyPayment(BaseModel):
    razorpay_payment_id: str = Field(min_length=1)
    razorpay_order_id: str = Field(min_length=1)
    razorpay_signature: str = Field(min_length=1)
    plan: str = Field(min_length=1)
