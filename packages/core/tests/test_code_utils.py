"""Tests for file filtering and language detection utilities."""

from prwarden_core.utils.code import (
    detect_language,
    detect_programming_language,
    fence_language,
    is_code_file,
    is_excluded,
    language_display_name,
)


class TestIsCodeFile:
    def test_python_file_is_code(self):
        assert is_code_file("app/services/user.py") is True

    def test_js_file_is_code(self):
        assert is_code_file("src/components/Button.tsx") is True

    def test_image_is_not_code(self):
        assert is_code_file("assets/logo.png") is False

    def test_lock_file_is_not_code(self):
        assert is_code_file("poetry.lock") is False

    def test_case_insensitive(self):
        assert is_code_file("image.PNG") is False


class TestIsExcluded:
    def test_full_path_glob(self):
        assert is_excluded("src/generated/api.py", ["src/generated/*.py"])

    def test_basename_glob(self):
        assert is_excluded("web/static/app.min.js", ["*.min.js"])

    def test_directory_prefix(self):
        assert is_excluded("app/migrations/0001_initial.py", ["migrations/"])
        assert is_excluded("migrations/0001_initial.py", ["migrations"])

    def test_no_partial_directory_match(self):
        assert not is_excluded("app/mymigrations/x.py", ["migrations/"])

    def test_no_patterns(self):
        assert not is_excluded("a.py", [])


class TestProgrammingLanguage:
    def test_known_extension(self):
        assert detect_programming_language("pkg/server.py") == "python"
        assert language_display_name("pkg/server.py") == "Python"
        assert fence_language("pkg/server.py") == "python"

    def test_extension_case_ignored(self):
        assert detect_programming_language("Main.PY") == "python"

    def test_unknown_extension(self):
        assert detect_programming_language("README") == "unknown"
        assert fence_language("README") == ""


class TestNaturalLanguage:
    def test_english(self):
        assert detect_language("Fix the login redirect") == "en"

    def test_japanese(self):
        assert detect_language("ログイン後のリダイレクトを修正") == "ja"

    def test_mostly_english_with_some_japanese(self):
        assert detect_language("Refactor the authentication module (認証)") == "en"

    def test_empty_defaults_to_english(self):
        assert detect_language("") == "en"
        assert detect_language("   \n") == "en"

    def test_threshold_is_configurable(self):
        text = "Refactor the authentication module (認証)"
        assert detect_language(text, threshold=0.01) == "ja"
