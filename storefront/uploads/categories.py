"""Upload categories: bucket, size cap, allowed types and key scoping for each."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional

from storefront.core.config import MIB, Settings

IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp"})
GALLERY_TYPES = IMAGE_TYPES | {"video/mp4"}


@dataclass(frozen=True)
class UploadCategory:
    name: str
    bucket: str
    allowed_types: FrozenSet[str]
    max_bytes: int
    resource_field: str
    # None means the key is scoped to the uploading user
    fixed_owner: Optional[str] = None
    admin_only: bool = False

    def owner_for(self, user_id: str) -> str:
        return self.fixed_owner or user_id


def build_categories(settings: Settings) -> Dict[str, UploadCategory]:
    return {
        "gallery": UploadCategory(
            name="gallery",
            bucket=settings.gallery_bucket,
            allowed_types=GALLERY_TYPES,
            max_bytes=10 * MIB,
            resource_field="setupId",
        ),
        "review": UploadCategory(
            name="review",
            bucket=settings.review_bucket,
            allowed_types=IMAGE_TYPES,
            max_bytes=5 * MIB,
            resource_field="reviewId",
        ),
        "product": UploadCategory(
            name="product",
            bucket=settings.product_bucket,
            allowed_types=IMAGE_TYPES,
            max_bytes=5 * MIB,
            resource_field="slug",
            fixed_owner="products",
            admin_only=True,
        ),
    }
