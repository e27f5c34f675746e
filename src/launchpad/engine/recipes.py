"""Recipe lookup for scaffold jobs."""

from __future__ import annotations

from collections.abc import Mapping

from launchpad.core.errors import InvalidRecipeError


def resolve_recipe(recipe_id: str, recipes: Mapping[str, str]) -> str:
    """Return the setup-script URL for a recipe id.

    Raises:
        InvalidRecipeError: If the id is not a known recipe.
    """
    try:
        return recipes[recipe_id]
    except KeyError:
        known = ", ".join(sorted(recipes)) or "none"
        raise InvalidRecipeError(f"unknown recipe {recipe_id!r} (known: {known})") from None


__all__ = ["resolve_recipe"]
