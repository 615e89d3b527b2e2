"""Tests for photo storage, the markup canvas and the photo service."""

import os

import pytest
from PIL import Image

from roofops import config
from roofops.core.exceptions import NotFoundError, ValidationFailedError
from roofops.crew.assignments import create_assignment
from roofops.photos import service, storage
from roofops.photos.markup import MarkupCanvas, fit_size, parse_color

GRAY = (120, 120, 120)
RED = (239, 68, 68)


def _canvas(width=200, height=100):
    return MarkupCanvas(Image.new("RGB", (width, height), GRAY))


class TestStorage:
    def test_save_and_read(self):
        path = storage.save_bytes("t1", "photos", b"abc", "roof.JPG", "image/jpeg")
        assert path.startswith(os.path.join("t1", "photos"))
        assert path.endswith(".jpg")
        assert storage.read_bytes(path) == b"abc"
        assert os.path.isfile(os.path.join(config.STORAGE_DIR, path))
        assert storage.delete(path)
        assert not storage.delete(path)

    def test_extension_from_content_type(self):
        assert storage.save_bytes("t1", "documents", b"%PDF", "contract", "application/pdf").endswith(".pdf")

    def test_rejects_traversal(self):
        with pytest.raises(ValidationFailedError):
            storage.absolute_path("../../etc/passwd")

    @pytest.mark.parametrize("bucket,data", [("Bad Bucket", b"x"), ("photos", b"")])
    def test_rejects_bad_input(self, bucket, data):
        with pytest.raises(ValidationFailedError):
            storage.save_bytes("t1", bucket, data)

    def test_size_limit(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_UPLOAD_BYTES", 4)
        with pytest.raises(ValidationFailedError, match="upload limit"):
            storage.save_bytes("t1", "photos", b"12345")

    def test_missing_file(self):
        with pytest.raises(NotFoundError):
            storage.read_bytes("t1/photos/missing.jpg")


class TestCanvasHelpers:
    @pytest.mark.parametrize("size,box,expected", [
        ((4000, 3000), (800, 600), (800, 600)),
        ((400, 300), (800, 600), (400, 300)),
        ((1000, 4000), (800, 800), (200, 800)),
    ])
    def test_fit_size(self, size, box, expected):
        assert fit_size(*size, *box) == expected

    def test_parse_color(self):
        assert parse_color("red") == RED
        assert parse_color("#00ff00") == (0, 255, 0)
        assert parse_color(None) == RED
        with pytest.raises(ValidationFailedError):
            parse_color("purple")

    def test_large_images_are_scaled_down(self):
        canvas = MarkupCanvas(Image.new("RGB", (400, 200)), max_width=100, max_height=100)
        assert canvas.size == (100, 50)


class TestCanvasHistory:
    def test_undo_redo_and_redo_tail(self):
        canvas = _canvas()
        canvas.apply({"tool": "pen", "points": [[10, 50], [190, 50]], "color": "red", "stroke_width": 5})
        assert canvas.history_depth == 2
        assert canvas.image.getpixel((100, 50)) == RED

        canvas.apply({"type": "undo"})
        assert canvas.history_index == 0
        assert canvas.image.getpixel((100, 50)) == GRAY
        assert not canvas.undo()

        canvas.apply({"type": "redo"})
        assert canvas.image.getpixel((100, 50)) == RED
        assert not canvas.redo()

        canvas.undo()
        canvas.apply({"tool": "rectangle", "start": [10, 10], "end": [60, 60], "color": "blue"})
        assert canvas.history_depth == 2
        assert not canvas.can_redo

    def test_clear(self):
        canvas = _canvas()
        canvas.replay([
            {"tool": "arrow", "start": [10, 10], "end": [100, 80]},
            {"tool": "circle", "start": [100, 50], "end": [120, 50]},
            {"type": "clear"},
        ])
        assert canvas.history_depth == 1
        assert canvas.image.getpixel((100, 80)) == GRAY

    def test_rectangle_outline(self):
        canvas = _canvas()
        canvas.apply({"tool": "rectangle", "start": [60, 60], "end": [10, 10], "stroke_width": 3})
        assert canvas.image.getpixel((10, 30)) == RED
        assert canvas.image.getpixel((35, 35)) == GRAY

    def test_eraser_paints_white(self):
        canvas = _canvas()
        canvas.apply({"tool": "pen", "points": [[20, 50], [180, 50]]})
        canvas.apply({"tool": "eraser", "points": [[20, 50], [180, 50]]})
        assert canvas.image.getpixel((100, 50)) == (255, 255, 255)

    def test_blank_text_adds_no_snapshot(self):
        canvas = _canvas()
        canvas.apply({"tool": "text", "position": [10, 10], "text": "   "})
        assert canvas.history_depth == 1
        canvas.apply({"tool": "text", "position": [10, 10], "text": "Hail damage", "stroke_width": 2})
        assert canvas.history_depth == 2

    @pytest.mark.parametrize("action", [
        {"tool": "laser"},
        {"tool": "pen", "points": [[1, 1]], "stroke_width": 0},
        {"tool": "pen", "points": []},
        {"tool": "arrow", "start": "here", "end": [1, 1]},
    ])
    def test_invalid_actions(self, action):
        with pytest.raises(ValidationFailedError):
            _canvas().apply(action)

    def test_round_trip_to_jpeg(self, jpeg_bytes):
        canvas = MarkupCanvas.from_bytes(jpeg_bytes(300, 150))
        assert canvas.size == (300, 150)
        assert canvas.to_jpeg_bytes()[:2] == b"\xff\xd8"

    def test_unreadable_bytes(self):
        with pytest.raises(ValidationFailedError):
            MarkupCanvas.from_bytes(b"not an image")


class TestPhotoService:
    def test_upload_needs_an_attachment(self, db, org, jpeg_bytes):
        with pytest.raises(ValidationFailedError):
            service.upload_photo(db, org.rep_ctx, jpeg_bytes(), "a.jpg", "image/jpeg")

    def test_upload_to_entry_fills_contact(self, db, org, make, jpeg_bytes):
        entry = make.entry(org.rep_ctx)
        photo = service.upload_photo(
            db, org.rep_ctx, jpeg_bytes(), "front.jpg", "image/jpeg",
            pipeline_entry_id=entry.id, category="inspection", latitude=32.7, longitude=-96.8,
        )
        assert photo.contact_id == entry.contact_id
        assert storage.read_bytes(photo.file_path)[:2] == b"\xff\xd8"
        assert [p.id for p in service.list_photos(db, org.rep_ctx, pipeline_entry_id=entry.id)] == [photo.id]

    @pytest.mark.parametrize("content_type,data", [
        ("text/plain", b"hello"),
        ("image/jpeg", b"definitely not a jpeg"),
    ])
    def test_rejects_non_images(self, db, org, make, content_type, data):
        contact = make.contact(org.rep_ctx)
        with pytest.raises(ValidationFailedError):
            service.upload_photo(db, org.rep_ctx, data, "x", content_type, contact_id=contact.id)

    def test_rejects_half_coordinates(self, db, org, make, jpeg_bytes):
        contact = make.contact(org.rep_ctx)
        with pytest.raises(ValidationFailedError):
            service.upload_photo(db, org.rep_ctx, jpeg_bytes(), "a.jpg", "image/jpeg",
                                 contact_id=contact.id, latitude=32.7)

    def test_assignment_buckets(self, db, org, jpeg_bytes):
        job = create_assignment(db, org.manager_ctx, {"title": "Inspect", "assigned_to": org.crew.id})
        photo = service.upload_photo(db, org.crew_ctx, jpeg_bytes(), "b.jpg", "image/jpeg",
                                     assignment_id=job.id, bucket_key="before")
        assert photo.bucket_key == "before"
        with pytest.raises(ValidationFailedError):
            service.upload_photo(db, org.crew_ctx, jpeg_bytes(), "b.jpg", "image/jpeg",
                                 assignment_id=job.id, bucket_key="roof")

    def test_bucket_key_needs_assignment(self, db, org, make, jpeg_bytes):
        contact = make.contact(org.rep_ctx)
        with pytest.raises(ValidationFailedError):
            service.upload_photo(db, org.rep_ctx, jpeg_bytes(), "b.jpg", "image/jpeg",
                                 contact_id=contact.id, bucket_key="before")

    def test_crew_cannot_open_other_crews_photos(self, db, org, make, ctx_for, jpeg_bytes):
        job = create_assignment(db, org.manager_ctx, {"title": "Inspect", "assigned_to": org.crew.id})
        photo = service.upload_photo(db, org.crew_ctx, jpeg_bytes(), "b.jpg", "image/jpeg",
                                     assignment_id=job.id, bucket_key="before")
        other_crew = ctx_for(make.user(org.tenant, "crew"))
        with pytest.raises(NotFoundError):
            service.get_photo(db, other_crew, photo.id)

    def test_crew_listing_limited_to_own_jobs(self, db, org, make, ctx_for, jpeg_bytes):
        contact = make.contact(org.rep_ctx)
        rep_photo = service.upload_photo(db, org.rep_ctx, jpeg_bytes(), "r.jpg", "image/jpeg",
                                         contact_id=contact.id)
        dana = make.user(org.tenant, "crew", first="Dana", last="Roofer")
        dana_job = create_assignment(db, org.manager_ctx, {"title": "Tear-off", "assigned_to": dana.id})
        dana_photo = service.upload_photo(db, ctx_for(dana), jpeg_bytes(), "d.jpg", "image/jpeg",
                                          assignment_id=dana_job.id, bucket_key="before")
        own_job = create_assignment(db, org.manager_ctx, {"title": "Inspect", "assigned_to": org.crew.id})
        own_photo = service.upload_photo(db, org.crew_ctx, jpeg_bytes(), "c.jpg", "image/jpeg",
                                         assignment_id=own_job.id, bucket_key="before")

        assert [p.id for p in service.list_photos(db, org.crew_ctx)] == [own_photo.id]
        assert service.list_photos(db, org.crew_ctx, contact_id=contact.id) == []
        with pytest.raises(NotFoundError):
            service.get_photo(db, org.crew_ctx, rep_photo.id)
        listed = {p.id for p in service.list_photos(db, org.manager_ctx)}
        assert listed == {rep_photo.id, dana_photo.id, own_photo.id}

    def test_apply_markup(self, db, org, make, jpeg_bytes):
        contact = make.contact(org.rep_ctx)
        photo = service.upload_photo(db, org.rep_ctx, jpeg_bytes(1600, 800), "a.jpg", "image/jpeg",
                                     contact_id=contact.id)
        result = service.apply_markup(db, org.rep_ctx, photo.id, [
            {"tool": "circle", "start": [100, 100], "end": [130, 100]},
            {"tool": "text", "position": [20, 20], "text": "Missing shingles"},
            {"type": "undo"},
        ])
        assert (result["width"], result["height"]) == (800, 400)
        assert result["history_depth"] == 3
        assert result["history_index"] == 1
        first = result["photo"]["annotated_path"]
        assert first.startswith(os.path.join(org.tenant.id, "annotated"))

        second = service.apply_markup(db, org.rep_ctx, photo.id, [{"tool": "pen", "points": [[5, 5]]}])
        assert second["photo"]["annotated_path"] != first
        with pytest.raises(NotFoundError):
            storage.read_bytes(first)

    def test_apply_markup_needs_actions(self, db, org):
        with pytest.raises(ValidationFailedError):
            service.apply_markup(db, org.rep_ctx, "any", [])

    def test_upload_document(self, db, org, make):
        entry = make.entry(org.rep_ctx)
        doc = service.upload_document(db, org.rep_ctx, entry.id, "contract", b"%PDF-1.4", "c.pdf", "application/pdf")
        assert doc.file_path.endswith(".pdf")
        with pytest.raises(ValidationFailedError):
            service.upload_document(db, org.rep_ctx, entry.id, " ", b"%PDF", "c.pdf", "application/pdf")
