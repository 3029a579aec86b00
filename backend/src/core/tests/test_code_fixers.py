# backend/src/core/tests/test_code_fixers.py
import pytest

from src.core.code_fixers import (
    DEFAULT_ICON, find_invalid_icon_references, fix_invalid_icons, parse_exports, placeholder_component,
    placeholder_target, plan_missing_import_placeholders, repair_import_exports,
)


class TestIconValidation:
    def test_invalid_icons_are_replaced_at_import_and_usage(self):
        content = ("import { Heart, Sparkles, Rocket } from 'lucide-react';\n"
                   "export default () => <div><Heart /><Sparkles size={4} /><Rocket /></div>")
        updated, invalid = fix_invalid_icons(content)

        assert invalid == ["Sparkles", "Rocket"]
        assert "import { Heart, Activity } from 'lucide-react';" in updated
        assert "<Activity size={4} />" in updated
        assert "Sparkles" not in updated and "Rocket" not in updated

    def test_aliased_import_is_checked_by_imported_name(self):
        content = "import { Sparkles as Shiny, Star as S } from 'lucide-react'\nconst a = <Shiny />"
        updated, invalid = fix_invalid_icons(content)

        assert invalid == ["Sparkles"]
        assert "import { Activity as Shiny, Star as S } from 'lucide-react'" in updated
        assert "<Shiny />" in updated

    def test_ui_copy_matching_an_icon_name_is_kept(self):
        content = ("import { Users } from 'lucide-react'\n"
                   "export default function Team() {\n"
                   "  return <h1><Users /> Users</h1>\n"
                   "}")
        updated, invalid = fix_invalid_icons(content)

        assert invalid == ["Users"]
        assert "<h1><Activity /> Users</h1>" in updated

    def test_only_code_references_are_rewritten(self):
        content = ("import { Rocket } from 'lucide-react'\n"
                   "// Rocket shows next to the launch button\n"
                   "const items = [{ label: 'Rocket launch', icon: Rocket }]\n"
                   "const title = `Rocket ${count}`\n"
                   "export default () => (\n"
                   "  <section aria-label=\"Rocket\">\n"
                   "    <Card icon={Rocket}>Rocket science</Card>\n"
                   "    {items.map(item => <item.icon key={item.label} />)}\n"
                   "  </section>\n"
                   ")")
        updated, _ = fix_invalid_icons(content)

        assert "icon: Activity }]" in updated
        assert "<Card icon={Activity}>Rocket science</Card>" in updated
        assert "// Rocket shows next to the launch button" in updated
        assert "label: 'Rocket launch'" in updated
        assert "`Rocket ${count}`" in updated
        assert 'aria-label="Rocket"' in updated

    def test_closing_tag_is_rewritten(self):
        updated, _ = fix_invalid_icons("import { Sparkles } from 'lucide-react'\n"
                                       "const a = <Sparkles className=\"h-4\">Sparkles</Sparkles>")
        assert '<Activity className="h-4">Sparkles</Activity>' in updated

    def test_valid_file_is_untouched(self):
        content = "import { Heart, Star } from \"lucide-react\"\n"
        assert fix_invalid_icons(content) == (content, [])

    def test_find_invalid_icon_references_across_files(self):
        files = {
            "src/A.tsx": "import { Sparkles } from 'lucide-react'",
            "src/B.tsx": "import { Sparkles, Rocket } from 'lucide-react'",
            "src/c.css": "import { Nope } from 'lucide-react'",
        }
        assert find_invalid_icon_references(files) == ["Sparkles", "Rocket"]
        assert DEFAULT_ICON == "Activity"


class TestPlaceholders:
    def test_unresolved_imports_get_typed_placeholders(self):
        files = {
            "src/App.tsx": (
                "import Foo from './Foo'\n"
                "import './theme.scss'\n"
                "import data from './data.json'\n"
                "import Card from '@/components/Card'\n"
                "import { util } from './lib/util'\n"
                "import Header from './components/Header'\n"
                "import React from 'react'\n"
            ),
            "src/components/Header.tsx": "export default function Header() { return null }",
        }
        planned = plan_missing_import_placeholders(files, files.keys(), typescript=True)

        assert set(planned) == {"src/Foo.tsx", "src/theme.scss", "src/data.json", "src/components/Card.tsx", "src/lib/util.css"}
        assert "export default function Foo(): JSX.Element" in planned["src/Foo.tsx"]
        assert "Foo placeholder" in planned["src/Foo.tsx"]
        assert planned["src/data.json"] == "{}\n"
        assert planned["src/lib/util.css"].startswith("/* auto-generated */")

    def test_javascript_projects_get_jsx_components(self):
        planned = plan_missing_import_placeholders({"src/App.jsx": "import Foo from './Foo'"}, [], typescript=False)
        assert list(planned) == ["src/Foo.jsx"]
        assert ": JSX.Element" not in planned["src/Foo.jsx"]

    def test_imports_escaping_the_project_are_ignored(self):
        assert plan_missing_import_placeholders({"src/App.tsx": "import x from '../../outside'"}, [], True) == {}

    def test_placeholder_helpers(self):
        assert placeholder_target("src/components/widget", True) == "src/components/widget.tsx"
        assert placeholder_target("styles/base", True) == "src/styles/base.css"
        assert "function Component()" in placeholder_component("my-thing", False)


class TestImportExportRepair:
    def test_parse_exports(self):
        code = "export const a = 1\nexport function b() {}\nconst c = 2\nexport { c as d }\nexport default b"
        assert parse_exports(code) == (True, ["a", "b", "d"], ["a", "b", "c"])

    def test_default_import_of_named_only_module_gets_default_export(self):
        files = {
            "src/App.tsx": "import Button from './Button'",
            "src/Button.tsx": "export function Button() { return null }",
        }
        changed, report = repair_import_exports(files)

        assert changed["src/Button.tsx"].endswith("export default Button\n")
        assert report.fixes == 1

    def test_lone_named_import_of_default_only_module_is_rewritten(self):
        files = {
            "src/App.tsx": "import { Card as Tile } from './Card';\nconst x = <Tile />",
            "src/Card.tsx": "export default function Card() { return null }",
        }
        changed, report = repair_import_exports(files)

        assert changed["src/App.tsx"].startswith("import Tile from './Card';")
        assert "src/Card.tsx" not in changed
        assert report.fixes == 1

    def test_missing_named_exports_are_synthesised(self):
        files = {
            "src/App.tsx": "import { helper, format } from './utils'",
            "src/utils.ts": "function helper() {}\nexport const other = 1",
        }
        changed, _ = repair_import_exports(files)
        target = changed["src/utils.ts"]

        assert "export { helper }" in target
        assert "export { other as format }" in target
        assert "export default other" in target

    def test_namespace_and_package_imports_are_ignored(self):
        files = {
            "src/App.tsx": "import * as utils from './utils'\nimport React from 'react'",
            "src/utils.ts": "export const a = 1",
        }
        assert repair_import_exports(files)[0] == {}
