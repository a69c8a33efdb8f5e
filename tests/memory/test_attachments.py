import base64

from devmentor.errors import ValidationError
from devmentor.memory import ImagePayload
from devmentor.memory.attachments import MAX_IMAGE_BYTES
from tests.memory.base import MemoryStoreTestCase

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def _data_url(data: bytes, mime: str = "image/png") -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


class AttachmentStoreTests(MemoryStoreTestCase):
    def test_save_images_writes_files_under_session_and_message(self) -> None:
        saved = self._attachments.save_images(
            "session_abc",
            "msg_def",
            [
                ImagePayload(id="img-1", data_url=_data_url(PNG_BYTES), mime_type="image/png", source="paste"),
                ImagePayload(id="img-2", data_url=_data_url(b"jpeg", "image/jpeg"), mime_type="image/jpeg", source="drop"),
            ],
        )
        self.assertEqual(["session_abc/msg_def/image_0.png", "session_abc/msg_def/image_1.jpg"], [a.path for a in saved])
        self.assertEqual(len(PNG_BYTES), saved[0].file_size)
        self.assertEqual(PNG_BYTES, self._attachments.resolve(saved[0].path).read_bytes())

    def test_too_many_images_are_rejected(self) -> None:
        image = ImagePayload(id="i", data_url=_data_url(PNG_BYTES), mime_type="image/png", source="paste")
        with self.assertRaises(ValidationError):
            self._attachments.save_images("session_abc", "msg_def", [image] * 6)

    def test_mismatched_or_corrupt_payloads_are_rejected(self) -> None:
        bad = [
            ImagePayload(id="a", data_url=_data_url(PNG_BYTES, "image/jpeg"), mime_type="image/png", source="paste"),
            ImagePayload(id="b", data_url="data:image/png;base64,@@@", mime_type="image/png", source="paste"),
            ImagePayload(id="c", data_url="https://example.com/x.png", mime_type="image/png", source="paste"),
            ImagePayload(id="d", data_url=_data_url(PNG_BYTES), mime_type="image/gif", source="paste"),
            ImagePayload(id="e", data_url=_data_url(PNG_BYTES), mime_type="image/png", source="camera"),
        ]
        for image in bad:
            with self.subTest(image=image.id):
                with self.assertRaises(ValidationError):
                    self._attachments.save_images("session_abc", "msg_def", [image])
        self.assertFalse((self._attachments.root / "session_abc").exists())

    def test_oversized_image_is_rejected(self) -> None:
        big = ImagePayload(
            id="big",
            data_url=_data_url(b"\x00" * (MAX_IMAGE_BYTES + 1)),
            mime_type="image/png",
            source="screenshot",
        )
        with self.assertRaises(ValidationError):
            self._attachments.save_images("session_abc", "msg_def", [big])

    def test_unsafe_identifiers_and_paths_are_rejected(self) -> None:
        image = ImagePayload(id="i", data_url=_data_url(PNG_BYTES), mime_type="image/png", source="paste")
        with self.assertRaises(ValidationError):
            self._attachments.save_images("../escape", "msg_def", [image])
        with self.assertRaises(ValidationError):
            self._attachments.resolve("../../etc/passwd")
