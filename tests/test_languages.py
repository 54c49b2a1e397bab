import pytest

from polyglot_runner.languages import (
    LanguageKind,
    LanguageSpec,
    expand,
    get_language,
    java_class_name,
    register_language,
    rewrite_java_class,
    supported_languages,
    unregister_language,
)
from polyglot_runner.policy import DEFAULT_IMAGES


def test_vocabulary_partitions_languages() -> None:
    kinds = {spec.name: spec.kind for spec in supported_languages()}
    assert kinds["python"] is LanguageKind.INTERPRETED
    assert kinds["javascript"] is LanguageKind.INTERPRETED
    assert kinds["cpp"] is LanguageKind.COMPILED
    assert kinds["java"] is LanguageKind.COMPILED
    assert get_language("cobol") is None


def test_csharp_haskell_and_r_are_supported() -> None:
    csharp = get_language("csharp")
    assert csharp.kind is LanguageKind.COMPILED
    assert csharp.required_tools == ("mcs", "mono")
    values = {"outdir": "/s/run_1", "classname": "run_1", "source": "/s/run_1.cs"}
    assert expand(csharp.compile, values) == ["mcs", "-out:/s/run_1/run_1.exe", "/s/run_1.cs"]
    assert expand(csharp.run, values) == ["mono", "/s/run_1/run_1.exe"]
    assert get_language("haskell").kind is LanguageKind.INTERPRETED
    assert get_language("haskell").toolchain == "runhaskell"
    assert get_language("r").run == ("Rscript", "{source}")


def test_every_builtin_language_has_a_default_image() -> None:
    names = {spec.name for spec in supported_languages()}
    assert names <= set(DEFAULT_IMAGES)


def test_supported_languages_sorted() -> None:
    names = [spec.name for spec in supported_languages()]
    assert names == sorted(names)


def test_required_tools_skip_artifact_placeholders() -> None:
    assert get_language("cpp").required_tools == ("g++",)
    assert get_language("java").required_tools == ("javac", "java")
    assert get_language("typescript").required_tools == ("tsc", "node")
    assert get_language("python").toolchain == "python3"


def test_expand_builds_argv_without_shell() -> None:
    argv = expand(get_language("java").run, {"outdir": "/s/run_1", "classname": "run_1", "source": "/s/run_1.java"})
    assert argv == ["java", "-cp", "/s/run_1", "run_1"]


def test_register_and_unregister_language() -> None:
    lua = LanguageSpec("lua", LanguageKind.INTERPRETED, ".lua", run=("lua", "{source}"))
    register_language(lua)
    try:
        assert get_language("lua") is lua
    finally:
        unregister_language("lua")
    assert get_language("lua") is None


def test_compiled_language_needs_compile_command() -> None:
    with pytest.raises(ValueError, match="compile command"):
        register_language(LanguageSpec("zig", LanguageKind.COMPILED, ".zig", run=("{binary}",)))


def test_java_class_name_prefers_public_class() -> None:
    source = "class Helper {}\npublic final class Main { }"
    assert java_class_name(source) == "Main"
    assert java_class_name("class Solo { }") == "Solo"
    assert java_class_name("interface Nothing {}") is None


def test_rewrite_java_class_renames_whole_identifiers_only() -> None:
    source = (
        "public class Main {\n"
        "    // Main entry point\n"
        "    static Main make() { return new Main(); }\n"
        "    public static void main(String[] args) {\n"
        '        System.out.println("Main " + MainHelper.X + \'M\');\n'
        "    }\n"
        "}\n"
        "class MainHelper { static int X = 1; }\n"
    )
    rewritten = rewrite_java_class(source, "run_abc")
    assert "public class run_abc {" in rewritten
    assert "static run_abc make() { return new run_abc(); }" in rewritten
    assert "// Main entry point" in rewritten
    assert '"Main "' in rewritten
    assert "MainHelper.X" in rewritten
    assert "class MainHelper" in rewritten


def test_rewrite_java_class_without_class_is_untouched() -> None:
    assert rewrite_java_class("enum E { A }", "run_1") == "enum E { A }"
