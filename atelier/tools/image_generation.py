"""
Image generation tools: free-form generation and outfit swaps.

Both end the agent turn once they produce images; the images are the answer.
"""

import logging
from typing import Optional

from pydantic import Field

from ..agent.prompts import CHANGE_OUTFIT_PROMPT
from ..agent.types import ImageInput, ToolResult
from ..services import genai
from .registry import ToolArgs, tool

logger = logging.getLogger(__name__)


class GenerateImageArgs(ToolArgs):
    prompt: str = Field(min_length=1, description="Detailed image-generation prompt, in English.")
    image_references: list[str] = Field(
        default_factory=list,
        description="Optional image IDs to use as references, e.g. ['image_1', 'gen_ab12cd34'].",
    )
    count: int = Field(default=1, ge=1, le=4, description="How many images to generate (1-4).")


@tool(
    name="generate_image",
    description=(
        "Generate fashion images from a text prompt and optional reference images. "
        "Use for on-model shots, new looks, model swaps, scene changes and edits. "
        "Pass product/model/scene images by ID in image_references. "
        "Returns the generated images; they are shown to the user directly."
    ),
    args=GenerateImageArgs,
    display_name="Generate Image",
    category="generation",
    image_args=("image_references",),
)
async def generate_image(args: GenerateImageArgs, images: dict, ctx) -> ToolResult:
    references: list[ImageInput] = images.get("image_references") or []
    produced = await genai.generate_images(args.prompt, references=references, count=args.count)
    return ToolResult(
        success=True,
        message=f"Generated {len(produced)} image(s).",
        images=produced,
        should_continue=False,
    )


class ChangeOutfitArgs(ToolArgs):
    original_image: str = Field(description="ID of the image whose model and scene are kept, e.g. 'image_1'.")
    outfit_images: list[str] = Field(
        min_length=1,
        description="IDs of the garment images to dress the model in, e.g. ['image_2'].",
    )
    outfit_instruct: Optional[str] = Field(
        default=None, description="Outfit description (for example the stylist's English output).",
    )
    style_notes: Optional[str] = Field(default=None, description="Extra styling notes.")


@tool(
    name="change_outfit",
    description=(
        "Keep the model, pose and scene of an existing image and replace only the clothing "
        "with the garments from one or more other images. "
        "Returns the edited image; it is shown to the user directly."
    ),
    args=ChangeOutfitArgs,
    display_name="Change Outfit",
    category="generation",
    image_args=("original_image", "outfit_images"),
)
async def change_outfit(args: ChangeOutfitArgs, images: dict, ctx) -> ToolResult:
    original: ImageInput = images["original_image"]
    outfits: list[ImageInput] = images["outfit_images"]

    prompt = CHANGE_OUTFIT_PROMPT
    if args.outfit_instruct:
        prompt += f"\n\nOutfit: {args.outfit_instruct}"
    if args.style_notes:
        prompt += f"\n\nNotes: {args.style_notes}"

    labels = ["ORIGINAL IMAGE"] + [f"GARMENT {i}" for i in range(1, len(outfits) + 1)]
    produced = await genai.generate_images(prompt, references=[original, *outfits], labels=labels)
    logger.info("Outfit changed on %s using %d garment image(s)", original.id, len(outfits))
    return ToolResult(
        success=True,
        message=f"Changed the outfit on {original.id}.",
        images=produced,
        should_continue=False,
    )
