"""Hands a downloaded file to Telegram with the send method matching its type."""

import logging
import os
from pathlib import Path
from typing import Union

from pyrogram import Client

from drivebot.classifier import ClassificationResult, MediaCategory, categorize, is_animation

logger = logging.getLogger(__name__)

# Telegram refuses photos above 10MB; those go out as documents
PHOTO_SIZE_LIMIT = 10 * 1024 * 1024


async def send_file(client: Client, chat_id: int, file_path: Union[str, Path], file_name: str,
                    classification: ClassificationResult, caption: str = "") -> MediaCategory:
    """Send the file and return the category it was actually sent as"""
    file_path = str(file_path)
    category = categorize(classification.mime_type, file_name)

    if category is MediaCategory.IMAGE and not is_animation(classification, file_name):
        if os.path.getsize(file_path) > PHOTO_SIZE_LIMIT:
            logger.info("Image %s exceeds the photo limit, sending as document", file_name)
            category = MediaCategory.DOCUMENT

    logger.info("Sending %s as %s (%s)", file_name, category.value, classification.mime_type)

    if category is MediaCategory.VIDEO:
        await client.send_video(chat_id, video=file_path, file_name=file_name,
                                caption=caption, supports_streaming=True)
    elif category is MediaCategory.IMAGE:
        if is_animation(classification, file_name):
            await client.send_animation(chat_id, animation=file_path, file_name=file_name, caption=caption)
        else:
            await client.send_photo(chat_id, photo=file_path, caption=caption)
    elif category is MediaCategory.AUDIO:
        await client.send_audio(chat_id, audio=file_path, file_name=file_name, caption=caption)
    else:
        await client.send_document(chat_id, document=file_path, file_name=file_name, caption=caption)

    return category
