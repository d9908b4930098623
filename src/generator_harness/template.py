"""Compilation-unit templates wrapping caller-supplied endpoint fragments."""
from __future__ import annotations

import textwrap

from src.shared.constants import DEFAULT_CLASS_NAME, ENTRY_POINT_METHOD

_BODY_INDENT = " " * 8

PROLOGUE = """\
import asyncio
import dataclasses
import datetime
import enum
import json
import logging
import typing
import uuid
from typing import Annotated, Any, Optional, Union

from fastapi import Body, Depends, Header, HTTPException, Path, Query, Request, Response
from fastapi.responses import HTMLResponse, JSONResponse, PlainTextResponse, RedirectResponse
from pydantic import BaseModel, Field

from src.generator_harness.routing import EndpointRouteBuilder
from src.generator_harness.services import from_services
"""


def indent_fragment(sources: str) -> str:
    """Re-indent a fragment to the entry-point body column.

    Python block structure is the only reason the fragment is touched; its
    text is otherwise inserted verbatim.
    """
    body = textwrap.dedent(sources).strip("\n")
    if not body.strip():
        return ""
    return textwrap.indent(body, _BODY_INDENT) + "\n"


def get_map_action_string(sources: str, class_name: str = DEFAULT_CLASS_NAME) -> str:
    """Wrap *sources* in the fixed scaffold and return the full module text."""
    return (
        f"{PROLOGUE}\n"
        f"\n"
        f"class {class_name}:\n"
        f"    @staticmethod\n"
        f"    def {ENTRY_POINT_METHOD}(app: EndpointRouteBuilder) -> EndpointRouteBuilder:\n"
        f"{indent_fragment(sources)}"
        f"        return app\n"
        f"\n"
        f"    @staticmethod\n"
        f"    def test_result() -> PlainTextResponse:\n"
        f"        return PlainTextResponse(\"Hello World!\")\n"
    )
