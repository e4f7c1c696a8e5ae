"""
Code Analysis Tool - Static metrics, symbols and search for Python sources
"""

import ast
import asyncio
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from agents.tools.base_tool import BaseTool
from orchestrator.errors import InvalidToolInput, ToolExecutionError

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 200

_NESTING_NODES = (ast.If, ast.For, ast.AsyncFor, ast.While, ast.With, ast.AsyncWith, ast.Try)


class CodeAnalysisInput(BaseModel):
    action: Literal["analyze", "getSymbols", "search"] = Field(
        description="The analysis action to perform"
    )
    path: str = Field(description="File to analyze, or directory to search")
    query: Optional[str] = Field(default=None, description="Regular expression to search for (search action)")
    include: str = Field(default="**/*.py", description="Glob pattern of files to search")


class CodeAnalysisTool(BaseTool):
    """Tool for analyzing code quality and structure"""

    def __init__(self, workspace_root: Union[str, Path, None] = None):
        self.workspace_root = Path(workspace_root or Path.cwd()).resolve()

    @property
    def name(self) -> str:
        return "code-analysis"

    @property
    def description(self) -> str:
        return "Analyze code quality, list symbols, and search code in the workspace"

    @property
    def input_model(self):
        return CodeAnalysisInput

    async def execute(self, tool_input: CodeAnalysisInput) -> Any:
        path = Path(tool_input.path).expanduser()
        if not path.is_absolute():
            path = self.workspace_root / path

        logger.info(f"[TOOL:{self.name}] {tool_input.action} {path}")

        if tool_input.action == "analyze":
            return await asyncio.to_thread(self.analyze_file, path)
        if tool_input.action == "getSymbols":
            return await asyncio.to_thread(self.get_symbols, path)
        if not tool_input.query:
            raise InvalidToolInput("'query' is required for the search action", tool_name=self.name)
        return await asyncio.to_thread(self.search_code, path, tool_input.query, tool_input.include)

    def _parse(self, path: Path) -> ast.Module:
        source = self._read(path)
        try:
            return ast.parse(source, filename=str(path))
        except SyntaxError as e:
            raise ToolExecutionError(f"Could not parse {path}: {e.msg} (line {e.lineno})")

    @staticmethod
    def _read(path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ToolExecutionError(f"Failed to read file: {e}")

    def analyze_file(self, path: Path) -> Dict[str, Any]:
        """Line counts, definitions, imports and deepest block nesting"""
        source = self._read(path)
        tree = self._parse(path)

        lines = source.splitlines()
        blank = sum(1 for line in lines if not line.strip())
        comments = sum(1 for line in lines if line.strip().startswith("#"))

        functions = [
            node.name for node in ast.walk(tree)
            if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef))
        ]
        classes = [node.name for node in ast.walk(tree) if isinstance(node, ast.ClassDef)]

        imports: List[str] = []
        for node in ast.walk(tree):
            if isinstance(node, ast.Import):
                imports.extend(alias.name for alias in node.names)
            elif isinstance(node, ast.ImportFrom):
                imports.append(node.module or ".")

        return {
            "path": str(path),
            "lines": len(lines),
            "codeLines": len(lines) - blank - comments,
            "commentLines": comments,
            "blankLines": blank,
            "functions": functions,
            "classes": classes,
            "imports": sorted(set(imports)),
            "maxNesting": self._max_nesting(tree)
        }

    @classmethod
    def _max_nesting(cls, node: ast.AST, depth: int = 0) -> int:
        deepest = depth
        for child in ast.iter_child_nodes(node):
            child_depth = depth + 1 if isinstance(child, _NESTING_NODES) else depth
            deepest = max(deepest, cls._max_nesting(child, child_depth))
        return deepest

    def get_symbols(self, path: Path) -> List[Dict[str, Any]]:
        """Top-level and nested functions and classes with their line ranges"""
        tree = self._parse(path)
        symbols = []

        def visit(node: ast.AST, container: Optional[str]) -> None:
            for child in ast.iter_child_nodes(node):
                if isinstance(child, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
                    kind = "class" if isinstance(child, ast.ClassDef) else (
                        "method" if container else "function"
                    )
                    symbols.append({
                        "name": child.name,
                        "kind": kind,
                        "container": container,
                        "line": child.lineno,
                        "endLine": child.end_lineno
                    })
                    visit(child, child.name)

        visit(tree, None)
        return symbols

    def search_code(self, root: Path, query: str, include: str) -> Dict[str, Any]:
        """Regex search over files under a directory"""
        try:
            pattern = re.compile(query)
        except re.error as e:
            raise InvalidToolInput(f"Invalid search pattern: {e}", tool_name=self.name)

        files = [root] if root.is_file() else sorted(p for p in root.glob(include) if p.is_file())
        matches = []
        truncated = False

        for file_path in files:
            try:
                text = file_path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError):
                continue
            for number, line in enumerate(text.splitlines(), start=1):
                if pattern.search(line):
                    matches.append({"path": str(file_path), "line": number, "text": line.strip()})
                    if len(matches) >= MAX_SEARCH_RESULTS:
                        truncated = True
                        break
            if truncated:
                break

        return {"matches": matches, "count": len(matches), "truncated": truncated}
