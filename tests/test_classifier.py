"""Tests for the junk directory classifier."""

import pytest

from storage_janitor.core.classifier import (
    DirectoryClassifier,
    ScanState,
    is_cache_directory,
    is_temp_file,
    residual_package,
)
from storage_janitor.core.errors import ErrorKind
from storage_janitor.core.models import CleaningPriority, JunkScanResult
from storage_janitor.core.packages import StaticPackageRegistry
from storage_janitor.core.progress import CancellationToken
from storage_janitor.core.safety import DefaultSafetyPolicy


def scan(classifier, roots, token=None):
    events = list(classifier.scan(roots, token))
    return events, events[-1].partial_result


def paths_in(result, category_id):
    return {f.path for f in result.category(category_id).files}


@pytest.fixture
def root(tmp_path):
    path = tmp_path / "root"
    path.mkdir()
    return path


class TestHelpers:
    """Test name based rules."""

    @pytest.mark.parametrize(
        "name",
        ["upload.tmp", "app.log", "backup.BAK", "tmp_123", "tempfile", "report.tmp.pdf",
         "~lock.docx", "core.1234", "Thumbs.db", ".DS_Store", "download.part"],
    )
    def test_temp_names(self, name):
        assert is_temp_file(name)

    @pytest.mark.parametrize("name", ["photo.jpg", "notes.txt", "contemporary.mp3", "changelog.txt"])
    def test_regular_names(self, name):
        """A tmp/temp substring or a log-like stem is not enough."""
        assert not is_temp_file(name)

    def test_cache_directory_names(self):
        """Cache directories are matched by exact name, case-insensitively."""
        assert is_cache_directory(".cache")
        assert is_cache_directory("Cache")
        assert is_cache_directory(".thumbnails")
        assert not is_cache_directory("cached_images")

    def test_residual_package(self):
        """The package is the first component under an app data root."""
        assert residual_package("/sdcard/Android/data/com.example.app/files/a.dat") == "com.example.app"
        assert residual_package("/sdcard/Android/obb/com.game/main.obb") == "com.game"
        assert residual_package("/sdcard/Android/data/com.example.app") is None
        assert residual_package("/sdcard/Music/song.mp3") is None


class TestCategories:
    """Test classification of a directory tree."""

    def test_cache_directory_collected(self, root, file_factory, permissive_policy):
        """Five files under .cache, one nested, add up to 150 bytes."""
        for i, size in enumerate((10, 20, 30, 40)):
            file_factory(root / ".cache" / f"f{i}.dat", b"x" * size)
        file_factory(root / ".cache" / "nested" / "deep.dat", b"x" * 50)

        events, result = scan(DirectoryClassifier(safety_policy=permissive_policy), [root])

        assert isinstance(result, JunkScanResult)
        cache = result.category("cache")
        assert cache.file_count == 5
        assert cache.total_size == 150
        assert cache.can_auto_clean
        assert cache.priority is CleaningPriority.HIGH
        assert [f.size for f in cache.files] == [50, 40, 30, 20, 10]
        assert all(f.can_delete for f in cache.files)
        assert events[-1].percent_complete == 100.0
        assert events[-1].succeeded

    def test_cache_walk_respects_scan_policy(self, root, file_factory, policy_factory):
        """Subdirectories of a cache that the policy refuses are not entered."""
        ok = file_factory(root / ".cache" / "ok.bin", b"o" * 10)
        file_factory(root / ".cache" / "secret" / "keep.bin", b"k" * 20)
        file_factory(root / ".cache" / "thumbs" / "t.bin", b"t" * 30)
        policy = policy_factory(scannable=lambda path: not path.endswith("secret"))

        _, result = scan(DirectoryClassifier(safety_policy=policy), [root])

        assert paths_in(result, "cache") == {str(ok), str(root / ".cache" / "thumbs" / "t.bin")}
        assert result.category("cache").total_size == 40

    def test_empty_folder_respects_delete_policy(self, root, policy_factory):
        """An empty directory the policy refuses is not reported."""
        (root / "empty").mkdir()
        policy = policy_factory(deletable=lambda path: not path.endswith("empty"))

        _, result = scan(DirectoryClassifier(safety_policy=policy), [root])

        assert result.category("empty_folders").files == []
        assert str(root / "empty") in policy.delete_checks

    def test_empty_folder_reported(self, root, permissive_policy):
        """An empty directory the policy allows is reported with size 0."""
        (root / "empty").mkdir()
        (root / "full").mkdir()
        (root / "full" / "keep.txt").write_text("data")

        _, result = scan(DirectoryClassifier(safety_policy=permissive_policy), [root])

        folders = result.category("empty_folders")
        assert paths_in(result, "empty_folders") == {str(root / "empty")}
        assert folders.files[0].size == 0
        assert folders.priority is CleaningPriority.LOW

    def test_temp_files(self, root, file_factory, permissive_policy):
        """Temp extensions and prefixes land in the temp category."""
        file_factory(root / "upload.tmp", b"1")
        file_factory(root / "docs" / "app.log", b"22")
        file_factory(root / "docs" / "notes.txt", b"333")

        _, result = scan(DirectoryClassifier(safety_policy=permissive_policy), [root])

        assert paths_in(result, "temp") == {str(root / "upload.tmp"), str(root / "docs" / "app.log")}

    def test_large_files_not_auto_cleaned(self, root, file_factory, permissive_policy):
        """Files above the threshold are reported but never auto-cleaned."""
        file_factory(root / "movie.mp4", b"m" * 500)
        file_factory(root / "small.mp4", b"m" * 50)

        _, result = scan(
            DirectoryClassifier(safety_policy=permissive_policy, large_file_threshold=100), [root]
        )

        large = result.category("large_files")
        assert paths_in(result, "large_files") == {str(root / "movie.mp4")}
        assert not large.can_auto_clean

    def test_residual_files_of_uninstalled_apps(self, root, file_factory, permissive_policy):
        """Only data of packages missing from the registry is residual."""
        gone = file_factory(root / "Android" / "data" / "com.gone.app" / "files" / "a.dat", b"g")
        file_factory(root / "Android" / "data" / "com.kept.app" / "files" / "b.dat", b"k")
        registry = StaticPackageRegistry({"com.kept.app": 3})

        _, result = scan(
            DirectoryClassifier(safety_policy=permissive_policy, package_registry=registry), [root]
        )

        assert paths_in(result, "residual") == {str(gone)}
        assert "com.gone.app" in result.category("residual").files[0].reason

    def test_each_file_in_one_category(self, root, file_factory, permissive_policy):
        """A large temp file under residual data is only reported as temp."""
        path = file_factory(root / "Android" / "data" / "com.gone.app" / "dump.tmp", b"t" * 500)

        _, result = scan(
            DirectoryClassifier(safety_policy=permissive_policy, large_file_threshold=100), [root]
        )

        assert paths_in(result, "temp") == {str(path)}
        assert paths_in(result, "large_files") == set()
        assert paths_in(result, "residual") == set()

    def test_catalogue_always_complete(self, root, permissive_policy):
        """All six categories are present even when empty."""
        _, result = scan(DirectoryClassifier(safety_policy=permissive_policy), [root])

        assert [c.id for c in result.categories] == [
            "cache", "temp", "residual", "apk", "empty_folders", "large_files",
        ]
        assert result.total_size == 0

    def test_can_delete_follows_policy(self, root, file_factory):
        """Protected names inside a cache directory are listed but not deletable."""
        file_factory(root / "cache" / "lib.so", b"elf")
        file_factory(root / "cache" / "blob.bin", b"data")

        _, result = scan(DirectoryClassifier(safety_policy=DefaultSafetyPolicy()), [root])

        flags = {f.path: f.can_delete for f in result.category("cache").files}
        assert flags == {str(root / "cache" / "lib.so"): False, str(root / "cache" / "blob.bin"): True}


class TestPackageArchives:
    """Test obsolete package archive detection."""

    def test_installed_newer_version_is_obsolete(self, root, apk_factory, permissive_policy):
        path = apk_factory(root / "Download" / "app.apk", "com.example.app", 10)
        registry = StaticPackageRegistry({"com.example.app": 12})

        _, result = scan(
            DirectoryClassifier(safety_policy=permissive_policy, package_registry=registry), [root]
        )

        apks = result.category("apk").files
        assert [f.path for f in apks] == [str(path)]
        assert "com.example.app" in apks[0].reason

    def test_same_version_is_obsolete(self, root, apk_factory, permissive_policy):
        path = apk_factory(root / "app.apk", "com.example.app", 12)
        registry = StaticPackageRegistry({"com.example.app": 12})

        _, result = scan(
            DirectoryClassifier(safety_policy=permissive_policy, package_registry=registry), [root]
        )

        assert paths_in(result, "apk") == {str(path)}

    def test_newer_archive_is_kept(self, root, apk_factory, permissive_policy):
        """An archive newer than the installed build is an update, not junk."""
        apk_factory(root / "app.apk", "com.example.app", 20)
        registry = StaticPackageRegistry({"com.example.app": 12})

        _, result = scan(
            DirectoryClassifier(safety_policy=permissive_policy, package_registry=registry), [root]
        )

        assert result.category("apk").files == []

    def test_not_installed_archive_is_kept(self, root, apk_factory, permissive_policy):
        apk_factory(root / "app.apk", "com.other.app", 1)

        _, result = scan(DirectoryClassifier(safety_policy=permissive_policy), [root])

        assert result.category("apk").files == []

    def test_unreadable_archive_reported(self, root, file_factory, permissive_policy):
        """A corrupt archive is reported with its own reason."""
        path = file_factory(root / "broken.apk", b"not a zip file")

        _, result = scan(DirectoryClassifier(safety_policy=permissive_policy), [root])

        apks = result.category("apk").files
        assert [f.path for f in apks] == [str(path)]
        assert apks[0].reason == "Unreadable package archive"


class TestProgress:
    """Test progress events, throttling and cancellation."""

    def _populate(self, root, file_factory, count=20):
        for i in range(count):
            file_factory(root / f"dir{i % 4}" / f"file{i}.txt", b"x")

    def test_progress_is_monotonic(self, root, file_factory, permissive_policy):
        self._populate(root, file_factory)
        classifier = DirectoryClassifier(safety_policy=permissive_policy, progress_interval=0)

        events, _ = scan(classifier, [root])

        percents = [e.percent_complete for e in events]
        assert percents == sorted(percents)
        assert percents[0] == 0.0
        assert percents[-1] == 100.0
        assert all(p <= 90.0 for p, e in zip(percents, events) if e.message.startswith("Scanning: "))
        assert sum(1 for e in events if e.is_terminal) == 1
        assert classifier.state is ScanState.COMPLETED

    def test_walk_events_are_throttled(self, root, file_factory, permissive_policy):
        """A frozen clock lets only one walk event through."""
        self._populate(root, file_factory)
        classifier = DirectoryClassifier(
            safety_policy=permissive_policy, progress_interval=1.0, clock=lambda: 0.0
        )

        events, _ = scan(classifier, [root])

        assert sum(1 for e in events if e.message.startswith("Scanning: ")) == 1
        assert events[-1].processed_count == 24

    def test_cancel_before_start(self, root, file_factory, permissive_policy):
        """A cancelled token produces a cancelled terminal event and state."""
        self._populate(root, file_factory)
        token = CancellationToken()
        token.cancel()
        classifier = DirectoryClassifier(safety_policy=permissive_policy)

        events, result = scan(classifier, [root], token)

        assert events[-1].is_terminal
        assert result.cancelled
        assert events[-1].percent_complete < 100
        assert classifier.state is ScanState.CANCELLED

    def test_cancel_mid_walk_returns_partial_result(self, root, file_factory, permissive_policy):
        """Cancelling during the walk stops it early with what was found."""
        for i in range(10):
            file_factory(root / f"junk{i:02d}.tmp", b"t")
        token = CancellationToken()
        classifier = DirectoryClassifier(safety_policy=permissive_policy, progress_interval=0)

        events = []
        for event in classifier.scan([root], token):
            events.append(event)
            if event.message.startswith("Scanning: "):
                token.cancel()

        result = events[-1].partial_result
        assert result.cancelled
        assert 0 < result.category("temp").file_count < 10
        assert classifier.state is ScanState.CANCELLED

    def test_unsafe_root_is_skipped(self, tmp_path):
        """Roots refused by the policy are skipped and reported as permission failures."""
        classifier = DirectoryClassifier(safety_policy=DefaultSafetyPolicy())
        missing = tmp_path / "missing"

        events, result = scan(classifier, [missing])

        assert events[-1].succeeded
        assert result.error_count == 1
        assert result.failures[0].path == str(missing)
        assert result.failures[0].kind is ErrorKind.PERMISSION
        assert result.total_size == 0

    def test_unreadable_root_is_counted(self, tmp_path, permissive_policy):
        """A root that cannot be listed is a per-path failure, not an abort."""
        classifier = DirectoryClassifier(safety_policy=permissive_policy)

        events, result = scan(classifier, [tmp_path / "missing"])

        assert events[-1].error is None
        assert result.error_count == 1
        assert classifier.state is ScanState.COMPLETED

    def test_estimate_has_a_floor(self, root, file_factory):
        """Small trees still estimate at least 1000 files."""
        file_factory(root / "a.txt", b"a")

        assert DirectoryClassifier().estimate_total_files([str(root)]) == 1000
