from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from google.api_core.exceptions import NotFound

from app.voice_coach import gcs_utils


@pytest.fixture
def client():
    mock_client = MagicMock()
    with patch.object(gcs_utils, "get_storage_client", return_value=mock_client):
        yield mock_client


def test_blob_size_lists_only_objects_sharing_the_name(client):
    client.list_blobs.return_value = [
        SimpleNamespace(name="calls/rep/call.mp3", size=123_456),
        SimpleNamespace(name="calls/rep/call.mp3.bak", size=9),
    ]

    assert gcs_utils.get_blob_size("/calls/rep/call.mp3", bucket="audio") == 123_456
    client.list_blobs.assert_called_once_with("audio", prefix="calls/rep/call.mp3")


def test_blob_size_is_none_when_object_is_not_listed(client):
    client.list_blobs.return_value = [SimpleNamespace(name="calls/rep/call.mp3.bak", size=9)]
    assert gcs_utils.get_blob_size("calls/rep/call.mp3", bucket="audio") is None


def test_download_maps_missing_object_to_file_not_found(client):
    client.bucket.return_value.blob.return_value.download_as_bytes.side_effect = NotFound("gone")

    with pytest.raises(FileNotFoundError, match="gs://audio/calls/rep/call.mp3"):
        gcs_utils.download_blob_bytes("calls/rep/call.mp3", bucket="audio")
