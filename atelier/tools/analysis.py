"""
Image analysis tools.
"""

from typing import Optional

from pydantic import Field

from ..agent.prompts import CONSISTENCY_PROMPT, DEFAULT_ANALYSIS_INSTRUCTION
from ..agent.types import ToolResult
from ..services import genai
from .registry import ToolArgs, tool


class VisualAnalysisArgs(ToolArgs):
    media_ref: str = Field(description="ID of the image to analyze.")
    instruction: Optional[str] = Field(
        default=None, description="What to focus on, e.g. 'describe the model's outfit'.",
    )


@tool(
    name="visual_analysis",
    description=(
        "Analyze an image in detail: garments, model, scene, lighting. "
        "Use when you need to understand an image before planning or generating. "
        "Returns a text analysis."
    ),
    args=VisualAnalysisArgs,
    display_name="Visual Analysis",
    category="analysis",
    image_args=("media_ref",),
)
async def visual_analysis(args: VisualAnalysisArgs, images: dict, ctx) -> ToolResult:
    analysis = await genai.analyze_images(
        args.instruction or DEFAULT_ANALYSIS_INSTRUCTION, [images["media_ref"]],
    )
    return ToolResult(
        success=True,
        message="Analysis complete.",
        should_continue=True,
        data={"analysis": analysis},
    )


class ConsistencyArgs(ToolArgs):
    generated_image: str = Field(description="ID of the generated image to check.")
    original_product_image: str = Field(description="ID of the original product image.")


@tool(
    name="analyze_consistency",
    description=(
        "Score (0-100) how faithfully a generated image reproduces the original product "
        "(material, cut, details), with reasoning and suggestions for a retry."
    ),
    args=ConsistencyArgs,
    display_name="Consistency Check",
    category="analysis",
    image_args=("generated_image", "original_product_image"),
)
async def analyze_consistency(args: ConsistencyArgs, images: dict, ctx) -> ToolResult:
    result = await genai.analyze_images_json(
        CONSISTENCY_PROMPT,
        [images["original_product_image"], images["generated_image"]],
        labels=["Original Product Image", "Generated Image"],
    )
    score = result.get("score")
    return ToolResult(
        success=True,
        message="Consistency analysis complete.",
        should_continue=True,
        data={
            "score": int(score) if isinstance(score, (int, float)) else 0,
            "reasoning": result.get("reasoning", ""),
            "suggestions": result.get("suggestions", ""),
        },
    )
