"""
Creative direction tools: stylist and photographer.

Both return text the model can feed into a later generation prompt.
"""

import re
from typing import Optional

from pydantic import Field

from ..agent.prompts import PHOTOGRAPHER_PROMPT, STYLIST_PROMPT
from ..agent.types import ToolResult
from ..core.config import get_settings
from ..services import genai
from .registry import ToolArgs, tool

_LOCAL_RE = re.compile(r"---LOCAL---(.*?)(?=---EN---|$)", re.DOTALL | re.IGNORECASE)
_EN_RE = re.compile(r"---EN---(.*)$", re.DOTALL | re.IGNORECASE)


def split_stylist_output(raw: str) -> tuple[str, str]:
    """Return (local, english) halves of the stylist answer; both fall back to the whole text."""
    local = _LOCAL_RE.search(raw)
    english = _EN_RE.search(raw)
    if local and english:
        return local.group(1).strip(), english.group(1).strip()
    return raw.strip(), raw.strip()


class StylistArgs(ToolArgs):
    product_image: str = Field(description="ID of the core product image.")
    model_image: Optional[str] = Field(default=None, description="Optional ID of a model reference image.")
    scene_image: Optional[str] = Field(default=None, description="Optional ID of a scene/background image.")
    style_preference: Optional[str] = Field(
        default=None, description="Optional style direction, e.g. 'French minimal', 'streetwear'.",
    )


@tool(
    name="stylist",
    description=(
        "Design a complete outfit around a core product, optionally matched to a model and scene. "
        "Returns a description for the user (outfit_instruct_local) and an English version "
        "to use as an image-generation prompt (outfit_instruct_en)."
    ),
    args=StylistArgs,
    display_name="Stylist",
    category="creative",
    image_args=("product_image", "model_image", "scene_image"),
)
async def stylist(args: StylistArgs, images: dict, ctx) -> ToolResult:
    inputs = [images["product_image"]]
    labels = ["Core product"]
    described = ["First image: core product."]
    if images.get("model_image"):
        inputs.append(images["model_image"])
        labels.append("Model reference")
        described.append(f"Image {len(inputs)}: model reference; match the look to the model.")
    if images.get("scene_image"):
        inputs.append(images["scene_image"])
        labels.append("Scene")
        described.append(f"Image {len(inputs)}: shooting environment; harmonize colors with it.")

    preference = f"\nStyle preference: {args.style_preference}\n" if args.style_preference else ""
    prompt = STYLIST_PROMPT.format(inputs="\n".join(described), preference=preference)

    raw = await genai.analyze_images(prompt, inputs, labels=labels, model=get_settings().stylist_model)
    local, english = split_stylist_output(raw)
    return ToolResult(
        success=True,
        message="Outfit advice generated.",
        should_continue=True,
        data={"outfit_instruct_local": local, "outfit_instruct_en": english},
    )


class PhotographerArgs(ToolArgs):
    product_image: str = Field(description="ID of the product image.")
    model_image: str = Field(description="ID of the model image.")
    scene_image: str = Field(description="ID of the scene/background image.")


@tool(
    name="photographer",
    description=(
        "Plan a shoot from a product, a model and a scene: returns model pose, "
        "composition and camera settings in English."
    ),
    args=PhotographerArgs,
    display_name="Photographer",
    category="creative",
    image_args=("product_image", "model_image", "scene_image"),
)
async def photographer(args: PhotographerArgs, images: dict, ctx) -> ToolResult:
    result = await genai.analyze_images_json(
        PHOTOGRAPHER_PROMPT,
        [images["product_image"], images["model_image"], images["scene_image"]],
        labels=["Product Image", "Model Image", "Scene/Background Image"],
        model=get_settings().thinking_model,
    )
    return ToolResult(
        success=True,
        message="Photography instructions generated.",
        should_continue=True,
        data={
            "Model_Pose": result.get("Model_Pose", ""),
            "Composition": result.get("Composition", ""),
            "Camera_Setting": result.get("Camera_Setting") or result.get("Camera Setting", ""),
        },
    )
