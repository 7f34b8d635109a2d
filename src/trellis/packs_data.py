"""Built-in pack definitions.

Each entry in BUILT_IN_PACKS is a JSON-compatible dict in the format read
by ``trellis.loader.load_pack``.
"""

from __future__ import annotations

from typing import Any


def sequential_email(index: int) -> str:
    return f"user{index}@example.com"


def with_prefix(prefix: str, index: int) -> str:
    return f"{prefix}{index}"


BLOG_PACK: dict[str, Any] = {
    "pack": "blog",
    "version": "1.0",
    "description": "Users, blogs and posts; a small graph for trying trellis out",
    "kinds": [
        {
            "kind": "User",
            "attributes": ["name", "email", "role"],
            "timestamps": ["inserted_at"],
            "required": ["email"],
            "templates": [
                {
                    "name": "example_user",
                    "attributes": {
                        "name": "Example user",
                        "email": {"$computed": "trellis.packs_data:sequential_email"},
                        "role": "author",
                    },
                },
                {
                    "name": "admin",
                    "attributes": {
                        "name": "Admin",
                        "email": "admin@example.com",
                        "role": "admin",
                    },
                },
            ],
        },
        {
            "kind": "Blog",
            "attributes": ["name", "slug"],
            "relationships": [{"attribute": "owner_id", "destination": "User", "name": "owner"}],
            "timestamps": ["inserted_at"],
            "required": ["name"],
            "templates": [
                {
                    "name": "example_blog",
                    "attributes": {
                        "name": "Example name",
                        "slug": {"$computed": "trellis.packs_data:with_prefix", "args": ["blog-"]},
                        "owner_id": "example_user",
                    },
                },
            ],
        },
        {
            "kind": "Post",
            "attributes": ["title", "content"],
            "relationships": [{"attribute": "blog_id", "destination": "Blog", "name": "blog"}],
            "timestamps": ["inserted_at", "updated_at"],
            "required": ["title"],
            "requires_actor": True,
            "templates": [
                {
                    "name": "example_post",
                    "attributes": {"title": "Example post", "blog_id": "example_blog"},
                },
                {
                    "name": "published_post",
                    "attributes": {
                        "title": "Published post",
                        "content": "Hello world",
                        "blog_id": "example_blog",
                        "actor": "admin",
                    },
                },
            ],
        },
    ],
    "scenarios": [
        {
            "name": "base",
            "description": "A post with its blog, with base content",
            "templates": {"example_post": {"title": "Base", "content": "Base content"}},
        },
        {
            "name": "extended",
            "description": "The base scenario with a different title",
            "extends": "base",
            "templates": {"example_post": {"title": "Extended"}},
        },
    ],
}


BUILT_IN_PACKS: dict[str, dict[str, Any]] = {
    "blog": BLOG_PACK,
}
