"""Tests for path validation and output path construction."""

import pytest

from remixer import path_guard
from remixer.errors import PathRejectedError, ValidationError


class TestValidate:
    """Accept only allowed audio files strictly inside the sanctioned directories."""

    def test_file_in_upload_dir_accepted(self, media):
        target = media.uploads / "song.mp3"
        target.write_bytes(b"audio")

        assert path_guard.validate(str(target)) == target.resolve()

    def test_nonexistent_output_in_result_dir_accepted(self, media):
        target = media.results / "song_extended_v1.wav"

        assert path_guard.validate(target) == target.resolve()

    def test_extension_check_is_case_insensitive(self, media):
        assert path_guard.validate(media.uploads / "SONG.FLAC")

    @pytest.mark.parametrize("ext", [".ogg", ".txt", ".py", ""])
    def test_disallowed_extension_rejected(self, media, ext):
        with pytest.raises(PathRejectedError) as exc_info:
            path_guard.validate(media.uploads / f"song{ext}")
        assert "extension" in exc_info.value.reason

    def test_parent_reference_rejected_even_if_it_resolves_inside(self, media):
        sneaky = f"{media.uploads}/../uploads/song.mp3"

        with pytest.raises(PathRejectedError) as exc_info:
            path_guard.validate(sneaky)
        assert exc_info.value.reason == "parent directory reference"

    def test_traversal_out_of_tree_rejected(self, media):
        with pytest.raises(PathRejectedError):
            path_guard.validate(f"{media.uploads}/../../../etc/passwd.mp3")

    def test_home_reference_rejected(self):
        with pytest.raises(PathRejectedError) as exc_info:
            path_guard.validate("~/music/song.mp3")
        assert exc_info.value.reason == "home directory reference"

    def test_outside_allowed_dirs_rejected(self, media):
        outside = media.root / "elsewhere.mp3"
        outside.write_bytes(b"audio")

        with pytest.raises(PathRejectedError) as exc_info:
            path_guard.validate(outside)
        assert exc_info.value.reason == "outside allowed directories"

    def test_sibling_prefix_dir_rejected(self, media):
        # /media/uploads_evil must not pass as being inside /media/uploads
        evil = media.uploads.parent / "uploads_evil"
        evil.mkdir()

        with pytest.raises(PathRejectedError):
            path_guard.validate(evil / "song.mp3")

    def test_symlink_escape_rejected(self, media):
        outside = media.root / "secret.mp3"
        outside.write_bytes(b"audio")
        link = media.uploads / "link.mp3"
        link.symlink_to(outside)

        with pytest.raises(PathRejectedError):
            path_guard.validate(link)

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_path_rejected(self, media, raw):
        with pytest.raises(PathRejectedError):
            path_guard.validate(raw)

    def test_rejection_is_a_validation_error(self, media):
        with pytest.raises(ValidationError):
            path_guard.validate("/etc/passwd")


class TestSanitizeFilename:
    def test_plain_name_unchanged(self):
        assert path_guard.sanitize_filename("My Song_extended_v1.mp3") == "My Song_extended_v1.mp3"

    @pytest.mark.parametrize(
        "name, expected",
        [
            ("a/b.mp3", "a_b.mp3"),
            ("a\\b.mp3", "a_b.mp3"),
            ("rm -rf $(x);.mp3", "rm -rf __x__.mp3"),
            ("song`id`.wav", "song_id_.wav"),
            ("~root.mp3", "_root.mp3"),
            ("....mp3", "_mp3"),
        ],
    )
    def test_unsafe_characters_replaced(self, name, expected):
        assert path_guard.sanitize_filename(name) == expected


class TestCreateSafeOutputPath:
    def test_builds_path_inside_base_dir(self, media):
        path = path_guard.create_safe_output_path(media.results, "song_extended_v1.mp3")

        assert path == (media.results / "song_extended_v1.mp3").resolve()

    def test_separators_cannot_escape_base_dir(self, media):
        path = path_guard.create_safe_output_path(media.results, "../../evil.mp3")

        assert path.parent == media.results.resolve()
        assert path.name == "____evil.mp3"

    def test_base_dir_outside_allow_list_rejected(self, media):
        with pytest.raises(PathRejectedError):
            path_guard.create_safe_output_path(media.root / "other", "song.mp3")
        assert not (media.root / "other").exists()

    def test_unsafe_extension_still_rejected(self, media):
        with pytest.raises(PathRejectedError):
            path_guard.create_safe_output_path(media.results, "song.sh")
