import pytest

from stallview import assets, config


@pytest.fixture
def image(data_dirs):
    path = config.ASSETS_DIR / "strips" / "one.png"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\x89PNG\r\n\x1a\n")
    return path


class TestResolveImage:

    def test_remote_references_pass_through(self, data_dirs):
        url = "https://cdn.example.com/a.png"
        assert assets.resolve_image(url) == url

    def test_local_reference_becomes_asset_url(self, image):
        assert assets.resolve_image("strips/one.png") == "/asset/strips/one.png"

    @pytest.mark.parametrize("reference", [None, "", "strips/missing.png", "../secret.png", "strips/one.txt"])
    def test_unavailable_images_fall_back_to_placeholder(self, image, reference):
        assert assets.resolve_image(reference) is None

    def test_missing_image_is_logged(self, data_dirs, caplog):
        assets.resolve_image("gone.png")
        assert "Image unavailable" in caplog.text


class TestLocalAssetPath:

    def test_finds_file(self, image):
        assert assets.local_asset_path("strips/one.png") == image.resolve()

    def test_rejects_escape(self, image):
        assert assets.local_asset_path("strips/../../viewer.json") is None
