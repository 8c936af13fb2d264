from __future__ import annotations

import asyncio

from sqlalchemy import select

from photosai.config import get_settings
from photosai.db.models import Pack, PackPrompt
from photosai.db.session import create_sessionmaker
from photosai.utils.logging import configure_logging, get_logger


logger = get_logger('seed')

DEFAULT_PACKS = [
    (
        'Corporate Headshots',
        'Clean studio portraits for profiles and resumes',
        [
            'professional corporate headshot, navy suit, soft studio lighting, neutral grey background',
            'business portrait, white shirt, shallow depth of field, modern office background',
            'linkedin profile photo, smiling, natural window light, blurred bookshelf behind',
        ],
    ),
    (
        'Travel Diaries',
        'Vacation shots in famous places around the world',
        [
            'standing on a santorini rooftop at sunset, linen outfit, warm golden light',
            'walking through a kyoto bamboo forest, casual jacket, morning mist',
            'sitting at a paris cafe terrace, eiffel tower in the distance, film photo',
            'hiking in the swiss alps, backpack, clear blue sky, wide angle',
        ],
    ),
    (
        'Fantasy Heroes',
        'Cinematic fantasy character portraits',
        [
            'as a medieval knight in ornate silver armor, dramatic castle backdrop, cinematic lighting',
            'as an elven archer in an enchanted forest, glowing particles, highly detailed',
        ],
    ),
]


async def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    sessionmaker = create_sessionmaker(settings)

    async with sessionmaker() as session:
        for name, description, prompts in DEFAULT_PACKS:
            result = await session.execute(select(Pack).where(Pack.name == name))
            if result.scalar_one_or_none():
                continue
            pack = Pack(name=name, description=description, image_url1='', image_url2='')
            session.add(pack)
            await session.flush()
            session.add_all(
                PackPrompt(pack_id=pack.id, prompt=prompt, position=position)
                for position, prompt in enumerate(prompts)
            )
            logger.info('pack_seeded', name=name, prompts=len(prompts))
        await session.commit()


def run() -> None:
    asyncio.run(main())


if __name__ == '__main__':
    run()
