"""
Publish Writerside and Authord documentation to a single Confluence page.

Copyright 2025-2026, wr2conf authors
"""

import logging
import os
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Protocol

from cattrs import BaseValidationError

from .external import execute_subprocess
from .frontmatter import extract_frontmatter_object

LOGGER = logging.getLogger(__name__)


class DiagramRenderer(Protocol):
    "Turns a diagram definition into PNG image data."

    def render(self, source: str) -> bytes:
        """
        Renders a diagram.

        :param source: Diagram definition text.
        :returns: PNG image data.
        :raises RuntimeError: If the diagram cannot be rendered.
        """
        ...


def _env_int(name: str) -> int | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return int(value)
    except ValueError:
        LOGGER.warning("Ignoring non-integer value for %s: %s", name, value)
        return None


def _env_float(name: str) -> float | None:
    value = os.getenv(name)
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        LOGGER.warning("Ignoring non-numeric value for %s: %s", name, value)
        return None


@dataclass(frozen=True)
class MermaidConfigProperties:
    """
    Configuration options for rendering Mermaid diagrams with the Mermaid CLI.

    :param width: Width of the page the diagram is rendered on.
    :param height: Height of the page the diagram is rendered on.
    :param scale: Scaling factor for the rendered diagram.
    :param background_color: Background color, e.g. `transparent` or `#ffffff`.
    :param theme: Mermaid theme, e.g. `default`, `neutral`, `dark` or `forest`.
    :param config_file: Path to a Mermaid JSON configuration file.
    :param timeout: Seconds to wait for a single diagram before giving up.
    """

    width: int | None = None
    height: int | None = None
    scale: float | None = None
    background_color: str | None = None
    theme: str | None = None
    config_file: str | None = None
    timeout: float | None = 120.0

    @classmethod
    def from_env(cls) -> "MermaidConfigProperties":
        "Reads rendering options from `MMD_*` environment variables."

        return cls(
            width=_env_int("MMD_WIDTH"),
            height=_env_int("MMD_HEIGHT"),
            scale=_env_float("MMD_SCALE"),
            background_color=os.getenv("MMD_BG") or None,
            theme=os.getenv("MMD_THEME") or None,
            config_file=os.getenv("MMD_CONFIG") or None,
            timeout=_env_float("MMD_TIMEOUT") or cls.timeout,
        )


@dataclass
class MermaidDiagramConfig:
    """
    Rendering options a Mermaid diagram declares in its own front-matter.

    :param scale: Scaling factor for the rendered diagram.
    """

    scale: float | None = None


@dataclass
class MermaidProperties:
    """
    An object that holds the front-matter properties structure for Mermaid diagrams.

    :param title: The title of the diagram.
    :param config: Configuration options for rendering.
    """

    title: str | None = None
    config: MermaidDiagramConfig | None = None


def read_mermaid_properties(source: str) -> MermaidProperties:
    """
    Extracts rendering preferences from the front-matter of a Mermaid diagram.

    ```
    ---
    title: Tiny flow diagram
    config:
        scale: 1
    ---
    flowchart LR
        A[Component A] --> B[Component B]
    ```
    """

    try:
        properties, _ = extract_frontmatter_object(MermaidProperties, source)
    except BaseValidationError as ex:
        LOGGER.warning("Failed to extract Mermaid properties: %s", ex)
        return MermaidProperties()

    return properties or MermaidProperties()


def _mmdc_name() -> str:
    return "mmdc.cmd" if os.name == "nt" else "mmdc"


def _local_mmdc() -> Path | None:
    "Path to the Mermaid CLI installed in the `node_modules` directory of the current project."

    local = Path.cwd() / "node_modules" / ".bin" / _mmdc_name()
    return local if local.exists() else None


def get_mmdc() -> list[str]:
    """
    Command prefix that launches the Mermaid diagram converter.

    Prefers a project-local installation, then an executable on the search path, and falls back to `npx`.
    """

    local = _local_mmdc()
    if local is not None:
        return [str(local)]

    executable = _mmdc_name()
    if shutil.which(executable) is not None:
        return [executable]

    return ["npx", "-y", "-p", "@mermaid-js/mermaid-cli", "mmdc"]


def has_mmdc() -> bool:
    "True if Mermaid diagram converter is available without downloading it."

    return _local_mmdc() is not None or shutil.which(_mmdc_name()) is not None


class MermaidRenderer:
    "Renders Mermaid diagrams into PNG images by invoking the Mermaid CLI in a subprocess."

    config: MermaidConfigProperties

    def __init__(self, config: MermaidConfigProperties | None = None) -> None:
        self.config = config or MermaidConfigProperties()

    def command(self, config: MermaidConfigProperties) -> list[str]:
        "Builds the command line that reads a diagram from stdin and writes PNG data to stdout."

        cmd = get_mmdc()
        cmd.extend(
            [
                "--input",
                "-",
                "--output",
                "-",
                "--outputFormat",
                "png",
                "--quiet",
                "--backgroundColor",
                config.background_color or "transparent",
                "--scale",
                f"{config.scale or 2:g}",
            ]
        )
        if config.width:
            cmd.extend(["--width", str(config.width)])
        if config.height:
            cmd.extend(["--height", str(config.height)])
        if config.theme:
            cmd.extend(["--theme", config.theme])
        if config.config_file:
            cmd.extend(["--configFile", config.config_file])
        return cmd

    def render(self, source: str) -> bytes:
        "Generates a PNG image from a Mermaid diagram source."

        config = self.config
        properties = read_mermaid_properties(source)
        if properties.config is not None and properties.config.scale:
            config = replace(config, scale=properties.config.scale)

        return execute_subprocess(self.command(config), source.encode("utf-8"), application="Mermaid", timeout=config.timeout)
