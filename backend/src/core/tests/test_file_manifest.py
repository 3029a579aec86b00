# backend/src/core/tests/test_file_manifest.py
import pytest

from src.core.file_manifest import (
    build_file_manifest, extract_packages, import_target_base, parse_import_clause, parse_imports,
    resolve_local_import,
)


class TestImportParsing:
    """Static import parsing used by the parser, the manifest and the fixers."""

    @pytest.mark.parametrize("clause, expected", [
        ("React", ("React", [], False)),
        ("{ useState, useEffect as effect }", (None, ["useState", "useEffect"], False)),
        ("React, { useState }", ("React", ["useState"], False)),
        ("* as utils", (None, [], True)),
        ("type { Props }", (None, ["Props"], False)),
        (None, (None, [], False)),
    ])
    def test_parse_import_clause(self, clause, expected):
        assert parse_import_clause(clause) == expected

    def test_parse_imports_handles_side_effect_and_multiline(self):
        content = "import './index.css'\nimport {\n  Heart,\n  Star\n} from 'lucide-react'\n"
        imports = parse_imports(content)

        assert imports[0].source == "./index.css"
        assert imports[0].is_side_effect
        assert imports[1].source == "lucide-react"
        assert imports[1].named == ["Heart", "Star"]

    def test_extract_packages(self):
        content = ("import React from 'react'\nimport { motion } from 'framer-motion'\n"
                   "import dayjs from 'dayjs/plugin/utc'\nimport Local from '../Local'\n"
                   "import { motion as m } from 'framer-motion'\n")
        assert extract_packages(content) == ["framer-motion", "dayjs"]


class TestLocalResolution:
    def test_import_target_base(self):
        assert import_target_base("src/App.tsx", "./components/Header") == "src/components/Header"
        assert import_target_base("src/components/Header.tsx", "../lib/util") == "src/lib/util"
        assert import_target_base("src/pages/Home.tsx", "@/hooks/useX") == "src/hooks/useX"
        assert import_target_base("src/App.tsx", "react") is None

    def test_resolve_local_import_tries_extensions_and_index(self):
        known = ["src/components/Header.tsx", "src/lib/index.ts", "src/index.css"]
        assert resolve_local_import("src/App.tsx", "./components/Header", known) == "src/components/Header.tsx"
        assert resolve_local_import("src/App.tsx", "./lib", known) == "src/lib/index.ts"
        assert resolve_local_import("src/App.tsx", "./index.css", known) == "src/index.css"
        assert resolve_local_import("src/App.tsx", "./Missing", known) is None


class TestBuildFileManifest:
    def test_manifest_records_components_types_and_routes(self):
        files = {
            "src/App.tsx": "import { BrowserRouter } from 'react-router-dom'\nimport Header from './components/Header'\n"
                           "export default function App() { return <BrowserRouter><Header /></BrowserRouter> }",
            "src/components/Header.tsx": "const Header = () => <header className=\"p-4\" />\nexport default Header",
            "src/index.css": "@tailwind base;",
            "tailwind.config.js": "export default {}",
        }
        manifest = build_file_manifest(files)

        assert manifest.entry_point == "src/App.tsx"
        assert manifest.routes == ["src/App.tsx"]
        assert manifest.files["src/App.tsx"].component_name == "App"
        assert manifest.files["src/components/Header.tsx"].component_name == "Header"
        assert manifest.files["src/components/Header.tsx"].is_component
        assert manifest.files["src/index.css"].file_type == "style"
        assert manifest.files["tailwind.config.js"].file_type == "config"
        assert [i.source for i in manifest.files["src/App.tsx"].imports] == ["react-router-dom", "./components/Header"]

    def test_entry_point_falls_back_to_first_tsx(self):
        manifest = build_file_manifest({"src/Main.tsx": "export default function Main() { return null }"})
        assert manifest.entry_point == "src/Main.tsx"
