"""
Integration tests for the reference tools

Tests the file-system, terminal and code-analysis tools against a real
temporary workspace, plus the shared tool contract.
"""

import asyncio
import sys
import textwrap
import threading
import time

import pytest

from agents.tools.code_analysis import CodeAnalysisTool
from agents.tools.file_system import FileSystemTool
from agents.tools.terminal import TerminalTool
from orchestrator.errors import InvalidToolInput, ToolExecutionError


SAMPLE_MODULE = textwrap.dedent('''
    """Sample module"""
    import os
    from pathlib import Path

    # a comment


    class Greeter:
        def greet(self, name):
            if name:
                for _ in range(1):
                    return f"hi {name}"
            return "hi"


    def helper():
        return os.getcwd()
''').lstrip()


class TestToolContract:
    """Test validation and catalog entries shared by all tools"""

    def test_schema_has_no_title(self, tmp_path):
        schema = FileSystemTool(tmp_path).schema

        assert "title" not in schema
        assert set(schema["required"]) == {"action", "path"}

    def test_missing_fields(self, tmp_path):
        with pytest.raises(InvalidToolInput) as exc_info:
            FileSystemTool(tmp_path).validate_input({})

        error = exc_info.value
        assert "missing required field(s)" in str(error)
        assert error.tool_name == "file-system"
        assert {tuple(e["loc"]) for e in error.validation_errors} == {("action",), ("path",)}

    def test_non_object_input(self, tmp_path):
        with pytest.raises(InvalidToolInput):
            FileSystemTool(tmp_path).validate_input(["read"])

    def test_invalid_enum_value(self, tmp_path):
        with pytest.raises(InvalidToolInput) as exc_info:
            FileSystemTool(tmp_path).validate_input({"action": "chmod", "path": "x"})

        assert exc_info.value.validation_errors[0]["loc"] == ["action"]

    def test_openai_tool_entry(self, tmp_path):
        entry = TerminalTool(tmp_path).to_openai_tool()

        assert entry["function"]["name"] == "terminal"
        assert entry["function"]["parameters"]["required"] == ["command"]


@pytest.mark.asyncio
class TestFileSystemTool:
    """Test workspace file operations"""

    async def run(self, tool, **payload):
        return await tool.execute(tool.validate_input(payload))

    async def test_write_then_read(self, tmp_path):
        tool = FileSystemTool(tmp_path)

        written = await self.run(tool, action="write", path="src/app.py", content="print('hi')\n")
        content = await self.run(tool, action="read", path="src/app.py")

        assert written == {"success": True, "path": str(tmp_path.resolve() / "src" / "app.py")}
        assert content == "print('hi')\n"

    async def test_list_directory(self, tmp_path):
        (tmp_path / "a.txt").write_text("a")
        (tmp_path / "sub").mkdir()
        tool = FileSystemTool(tmp_path)

        entries = await self.run(tool, action="list", path=str(tmp_path))

        assert entries == [
            {"name": "a.txt", "type": "file", "path": str(tmp_path / "a.txt")},
            {"name": "sub", "type": "directory", "path": str(tmp_path / "sub")},
        ]

    async def test_exists_delete_mkdir(self, tmp_path):
        tool = FileSystemTool(tmp_path)

        assert await self.run(tool, action="exists", path="nested") == {"exists": False}
        await self.run(tool, action="mkdir", path="nested/deeper")
        assert await self.run(tool, action="exists", path="nested") == {"exists": True, "type": "directory"}
        await self.run(tool, action="delete", path="nested")
        assert not (tmp_path / "nested").exists()

    async def test_disk_work_runs_off_the_event_loop(self, tmp_path, monkeypatch):
        tool = FileSystemTool(tmp_path)
        loop_thread = threading.get_ident()
        seen = []
        monkeypatch.setattr(tool, "read_file", lambda path: seen.append(threading.get_ident()) or "x")

        assert await self.run(tool, action="read", path="a.txt") == "x"
        assert seen and seen[0] != loop_thread

    async def test_write_requires_content(self, tmp_path):
        with pytest.raises(InvalidToolInput):
            await self.run(FileSystemTool(tmp_path), action="write", path="x.txt")

    async def test_read_missing_file(self, tmp_path):
        with pytest.raises(ToolExecutionError) as exc_info:
            await self.run(FileSystemTool(tmp_path), action="read", path="missing.txt")

        assert "Failed to read file" in str(exc_info.value)


@pytest.mark.asyncio
class TestTerminalTool:
    """Test shell command execution"""

    async def test_runs_command_in_workspace(self, tmp_path):
        (tmp_path / "marker.txt").write_text("x")
        tool = TerminalTool(tmp_path)

        result = await tool.execute(tool.validate_input({
            "command": f'"{sys.executable}" -c "import os; print(sorted(os.listdir()))"'
        }))

        assert result["success"] is True
        assert result["exitCode"] == 0
        assert "marker.txt" in result["stdout"]

    async def test_nonzero_exit(self, tmp_path):
        tool = TerminalTool(tmp_path)

        result = await tool.execute(tool.validate_input({
            "command": f'"{sys.executable}" -c "import sys; sys.stderr.write(\'bad\'); sys.exit(3)"'
        }))

        assert result["success"] is False
        assert result["exitCode"] == 3
        assert result["stderr"] == "bad"

    @pytest.mark.slow
    async def test_timeout_kills_process(self, tmp_path):
        tool = TerminalTool(tmp_path)

        with pytest.raises(ToolExecutionError) as exc_info:
            await tool.execute(tool.validate_input({
                "command": f'"{sys.executable}" -c "import time; time.sleep(10)"',
                "timeout": 0.5
            }))

        assert "timed out" in str(exc_info.value)
        assert not tool._running

    async def test_cancel_kills_process(self, tmp_path):
        tool = TerminalTool(tmp_path)
        task = asyncio.create_task(tool.execute(tool.validate_input({
            "command": f'exec "{sys.executable}" -c "import time; time.sleep(30)"'
        })))
        while not tool._running:
            await asyncio.sleep(0.01)
        process = next(iter(tool._running))

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert process.returncode is not None
        assert not tool._running

    async def test_release_kills_running_process(self, tmp_path):
        tool = TerminalTool(tmp_path)
        task = asyncio.create_task(tool.execute(tool.validate_input({
            "command": f'exec "{sys.executable}" -c "import time; time.sleep(30)"'
        })))
        while not tool._running:
            await asyncio.sleep(0.01)
        process = next(iter(tool._running))

        await tool.release()
        result = await task

        assert process.returncode is not None
        assert result["success"] is False
        assert not tool._running

    async def test_empty_command_rejected(self, tmp_path):
        with pytest.raises(InvalidToolInput):
            TerminalTool(tmp_path).validate_input({"command": ""})

    async def test_release_without_processes(self, tmp_path):
        await TerminalTool(tmp_path).release()


@pytest.mark.asyncio
class TestCodeAnalysisTool:
    """Test static analysis of Python sources"""

    async def run(self, tool, **payload):
        return await tool.execute(tool.validate_input(payload))

    async def test_analyze(self, tmp_path):
        (tmp_path / "sample.py").write_text(SAMPLE_MODULE)
        tool = CodeAnalysisTool(tmp_path)

        report = await self.run(tool, action="analyze", path="sample.py")

        assert report["lines"] == len(SAMPLE_MODULE.splitlines())
        assert report["commentLines"] == 1
        assert report["blankLines"] == 5
        assert report["codeLines"] == report["lines"] - 6
        assert report["classes"] == ["Greeter"]
        assert set(report["functions"]) == {"greet", "helper"}
        assert report["imports"] == ["os", "pathlib"]
        assert report["maxNesting"] == 2

    async def test_get_symbols(self, tmp_path):
        (tmp_path / "sample.py").write_text(SAMPLE_MODULE)
        tool = CodeAnalysisTool(tmp_path)

        symbols = await self.run(tool, action="getSymbols", path="sample.py")

        by_name = {s["name"]: s for s in symbols}
        assert by_name["Greeter"]["kind"] == "class"
        assert by_name["greet"]["kind"] == "method"
        assert by_name["greet"]["container"] == "Greeter"
        assert by_name["helper"]["kind"] == "function"
        assert by_name["helper"]["line"] < by_name["helper"]["endLine"]

    async def test_search(self, tmp_path):
        (tmp_path / "sample.py").write_text(SAMPLE_MODULE)
        (tmp_path / "notes.txt").write_text("def not_python(): pass\n")
        tool = CodeAnalysisTool(tmp_path)

        result = await self.run(tool, action="search", path=".", query=r"def \w+")

        assert result["count"] == 2
        assert {m["text"] for m in result["matches"]} == {"def greet(self, name):", "def helper():"}
        assert result["truncated"] is False

    async def test_search_does_not_stall_other_calls(self, tmp_path, monkeypatch):
        tool = CodeAnalysisTool(tmp_path)
        original = tool.search_code

        def slow_search(*args):
            time.sleep(0.3)
            return original(*args)

        monkeypatch.setattr(tool, "search_code", slow_search)
        ticks = []

        async def ticker():
            for _ in range(5):
                ticks.append(asyncio.get_running_loop().time())
                await asyncio.sleep(0.02)

        await asyncio.gather(self.run(tool, action="search", path=".", query="x"), ticker())

        assert len(ticks) == 5
        assert ticks[-1] - ticks[0] < 0.25

    async def test_search_requires_query(self, tmp_path):
        with pytest.raises(InvalidToolInput):
            await self.run(CodeAnalysisTool(tmp_path), action="search", path=".")

    async def test_invalid_regex(self, tmp_path):
        with pytest.raises(InvalidToolInput):
            await self.run(CodeAnalysisTool(tmp_path), action="search", path=".", query="(")

    async def test_syntax_error(self, tmp_path):
        (tmp_path / "broken.py").write_text("def broken(:\n")

        with pytest.raises(ToolExecutionError) as exc_info:
            await self.run(CodeAnalysisTool(tmp_path), action="analyze", path="broken.py")

        assert "Could not parse" in str(exc_info.value)
