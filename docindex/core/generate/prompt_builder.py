from docindex.models.layout import ImageDescription

CLASSIFICATION_GUIDE = """Classify the figure using one of the following values:
- photo: real-world photographic image.
- graph: data visualisation with axes (e.g. line graph, scatter plot).
- table: structured data in rows and columns.
- diagram: schematic or illustrative drawing (e.g. flowchart, circuit, anatomy).
- chart: high-level visualisation like pie or bar charts (not time-series).
- image: generic image not easily classifiable as any of the above.
- figure: catch-all, only when none of the above clearly apply."""

OCR_GUIDE = """Extract all text visible within the figure itself, not the surrounding page.
If no text is present in the figure, return an empty string."""


class PromptBuilder:
    FIGURE_DESCRIPTION_PROMPT = f"""You are given two images:
- The first image is a figure (e.g. photo, graph, table, diagram) extracted from a document.
- The second image, when present, is the full page the figure was extracted from.

Generate a structured description of the figure. Use the full page for context such as
captions, section headings or surrounding explanatory text.

Description: what the figure shows, in a few sentences.
Keywords: the terms someone would search for to find this figure.

{CLASSIFICATION_GUIDE}

{OCR_GUIDE}"""

    IMAGE_DESCRIPTION_PROMPT = f"""You are given an image from a document library.

Description: what the image shows, in a few sentences.
Keywords: the terms someone would search for to find this image.

{CLASSIFICATION_GUIDE}

{OCR_GUIDE}"""

    SUMMARY_PROMPT = """Read the following document and provide a concise summary.
Highlight the main points, key findings and any significant details.
The summary should be clear, accurate, and no longer than a paragraph."""

    COMBINE_PROMPT = """You are given a summary of the earlier part of a document and the content that follows it.
Produce one paragraph synthesizing both: a unified summary that keeps the key points
of the previous summary and adds those of the new content."""

    @staticmethod
    def build_summary_prompt(text: str) -> str:
        return f"## Document\n\n{text}"

    @staticmethod
    def build_combine_prompt(previous_summary: str, new_content: str) -> str:
        return f"## Previous Summary\n\n{previous_summary}\n\n## New Content\n\n{new_content}"

    @staticmethod
    def build_image_node_content(description: ImageDescription, file_path: str) -> str:
        """Markdown body of the single node an image document becomes."""
        return (
            "# Image\n"
            f"![Image]({file_path})\n\n"
            "### Image Description\n"
            f"{description.description}\n\n"
            "### Keywords\n"
            f"{', '.join(description.keywords)}\n\n"
            "### Classification\n"
            f"{description.classification}\n\n"
            "### OCR Text\n"
            f"{description.ocr_text}"
        )
