"""Locating and decoding the image descriptor inside a payload image."""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import ClassVar, Optional

TITAN_IMAGE_DESCRIPTOR_MAGIC = 0x5F435344474D495F  # "_IMGDSC_"
TITAN_IMAGE_DESCRIPTOR_ALIGNMENT = 1 << 16
TITAN_IMAGE_DESCRIPTOR_HASH_MAGIC = 0x48534148  # "HASH"

IMAGE_REGION_STATIC = 1 << 0
IMAGE_REGION_COMPRESSED = 1 << 1
IMAGE_REGION_WRITE_PROTECTED = 1 << 2
IMAGE_REGION_PERSISTENT = 1 << 4
IMAGE_REGION_PERSISTENT_RELOCATABLE = 1 << 5
IMAGE_REGION_PERSISTENT_EXPANDABLE = 1 << 6
IMAGE_REGION_OVERRIDE = 1 << 7
IMAGE_REGION_OVERRIDE_ON_TRANSITION = 1 << 8
IMAGE_REGION_MAILBOX = 1 << 9
IMAGE_REGION_SKIP_BOOT_VALIDATION = 1 << 10
IMAGE_REGION_EMPTY = 1 << 11

HASH_SHA256_BYTES = 32
IMAGE_REGION_SIZE = 44
_HASH_MAGIC_SIZE = 4
_IMAGE_NAME_SIZE = 32


class ImageType(enum.IntEnum):
    DEV = 0
    PROD = 1
    BREAKOUT = 2
    TEST = 3
    UNSIGNED_INTEGRITY = 4


class HashType(enum.IntEnum):
    NONE = 0
    SHA2_224 = 1
    SHA2_256 = 2
    SHA2_384 = 3
    SHA2_512 = 4
    SHA3_224 = 5
    SHA3_256 = 6
    SHA3_384 = 7
    SHA3_512 = 8


@dataclass
class ImageDescriptor:
    """The fixed part of an image descriptor found at ``offset``."""

    offset: int
    descriptor_magic: int
    descriptor_major: int
    descriptor_minor: int
    descriptor_offset: int
    descriptor_area_size: int
    image_name: bytes
    image_family: int
    image_major: int
    image_minor: int
    image_point: int
    image_subpoint: int
    build_timestamp: int
    image_type: int
    hash_type: int
    region_count: int
    image_size: int
    blob_size: int

    _FORMAT: ClassVar[struct.Struct] = struct.Struct("<QBBHII32sIIIIIQBBBBBBHII")
    SIZE: ClassVar[int] = _FORMAT.size

    @classmethod
    def unpack(cls, data: bytes, offset: int = 0) -> "ImageDescriptor":
        if offset < 0 or offset + cls.SIZE > len(data):
            raise ValueError(f"image descriptor at {offset} is truncated")
        v = cls._FORMAT.unpack_from(data, offset)
        return cls(
            offset=offset,
            descriptor_magic=v[0],
            descriptor_major=v[1],
            descriptor_minor=v[2],
            descriptor_offset=v[4],
            descriptor_area_size=v[5],
            image_name=v[6],
            image_family=v[7],
            image_major=v[8],
            image_minor=v[9],
            image_point=v[10],
            image_subpoint=v[11],
            build_timestamp=v[12],
            image_type=v[13],
            hash_type=v[15],
            region_count=v[17],
            image_size=v[20],
            blob_size=v[21],
        )


@dataclass
class PayloadVersion:
    major: int = 0
    minor: int = 0
    point: int = 0
    subpoint: int = 0


@dataclass
class PayloadInfo:
    """Summary of a payload image taken from its descriptor."""

    image_name: str = ""
    image_family: int = 0
    image_version: PayloadVersion = field(default_factory=PayloadVersion)
    image_type: int = 0
    image_hash: bytes = bytes(HASH_SHA256_BYTES)


def find_image_descriptor(image: bytes) -> Optional[ImageDescriptor]:
    """Return the first aligned descriptor in ``image``, or None.

    A descriptor whose area runs past the end of the image counts as absent.
    """
    data = bytes(image)
    last = len(data) - ImageDescriptor.SIZE + 1
    for offset in range(0, max(last, 0), TITAN_IMAGE_DESCRIPTOR_ALIGNMENT):
        (magic,) = struct.unpack_from("<Q", data, offset)
        if magic == TITAN_IMAGE_DESCRIPTOR_MAGIC:
            descriptor = ImageDescriptor.unpack(data, offset)
            if descriptor.descriptor_area_size + offset > len(data):
                return None
            return descriptor
    return None


def payload_info(image: bytes) -> Optional[PayloadInfo]:
    """Describe the payload in ``image``, or return None if it has no descriptor."""
    data = bytes(image)
    descriptor = find_image_descriptor(data)
    if descriptor is None:
        return None

    name_raw = descriptor.image_name[: _IMAGE_NAME_SIZE - 1]
    name = name_raw.split(b"\0", 1)[0].decode("latin-1")

    if descriptor.hash_type != HashType.SHA2_256:
        image_hash = bytes(HASH_SHA256_BYTES)
    else:
        start = (
            descriptor.offset
            + ImageDescriptor.SIZE
            + descriptor.region_count * IMAGE_REGION_SIZE
            + _HASH_MAGIC_SIZE
        )
        image_hash = data[start : start + HASH_SHA256_BYTES]
        if len(image_hash) != HASH_SHA256_BYTES:
            raise ValueError("image hash extends past the end of the image")

    return PayloadInfo(
        image_name=name,
        image_family=descriptor.image_family,
        image_version=PayloadVersion(
            descriptor.image_major,
            descriptor.image_minor,
            descriptor.image_point,
            descriptor.image_subpoint,
        ),
        image_type=descriptor.image_type,
        image_hash=image_hash,
    )