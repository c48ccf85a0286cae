"""PyQt5 review app: extract questions from a paper, fix them up, crop diagrams, export."""
from __future__ import annotations

import argparse
import html
import sys
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError
from PyQt5.QtCore import QObject, QPointF, QRectF, Qt, QThread, pyqtSignal
from PyQt5.QtGui import QColor, QPainter, QPen, QPixmap
from PyQt5.QtWidgets import (
    QAction,
    QApplication,
    QCheckBox,
    QComboBox,
    QDialog,
    QDialogButtonBox,
    QFileDialog,
    QFormLayout,
    QHBoxLayout,
    QLabel,
    QLineEdit,
    QListWidget,
    QListWidgetItem,
    QMainWindow,
    QMessageBox,
    QPlainTextEdit,
    QProgressBar,
    QPushButton,
    QSpinBox,
    QSplitter,
    QVBoxLayout,
    QWidget,
)

from .config import AppConfig, load_config
from .cropper import decode_data_uri, is_data_uri
from .crop_selector import CropSelector, Point
from .errors import ConfigurationError, ExamIngestError
from .events import Event, EventBus, EventLevel
from .export import IngestClient, run_export
from .pdf_pages import PageArtifact
from .pipeline import extract_questions, render_pages
from .review import CropRequest, CropTarget, ReviewSession, split_math_spans
from .schemas import Difficulty, QuestionType, ResolvedQuestion, Subject
from .storage import build_image_store

_LEVEL_COLORS = {
    EventLevel.info: "#444444",
    EventLevel.success: "#1b7f3b",
    EventLevel.warn: "#a66300",
    EventLevel.error: "#b00020",
}


def pixmap_from_data_uri(data_uri: str) -> Optional[QPixmap]:
    try:
        _, data = decode_data_uri(data_uri)
    except ValueError:
        return None
    pixmap = QPixmap()
    if not pixmap.loadFromData(data):
        return None
    return pixmap


def render_math_html(text: str) -> str:
    parts = []
    for is_math, segment in split_math_spans(text):
        escaped = html.escape(segment)
        parts.append(f"<i style='font-family:monospace;color:#1a4d8f'>{escaped}</i>" if is_math else escaped)
    return "".join(parts).replace("\n", "<br>")


class PageCanvas(QWidget):
    """Shows one page raster and forwards pointer drags to a CropSelector."""

    def __init__(self, selector: CropSelector, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.selector = selector
        self._pixmap = QPixmap()
        self.setMinimumSize(480, 640)
        self.setCursor(Qt.CrossCursor)
        self.reload_page()

    def reload_page(self) -> None:
        self._pixmap = QPixmap()
        self._pixmap.loadFromData(self.selector.page.image_bytes or b"")
        self.update()

    def _target_rect(self) -> QRectF:
        if self._pixmap.isNull():
            return QRectF()
        scaled = self._pixmap.size().scaled(self.size(), Qt.KeepAspectRatio)
        left = (self.width() - scaled.width()) / 2.0
        top = (self.height() - scaled.height()) / 2.0
        return QRectF(left, top, scaled.width(), scaled.height())

    def _scale(self):
        target = self._target_rect()
        return self.selector.scale_for(target.width(), target.height()), target

    def mousePressEvent(self, event) -> None:
        if event.button() != Qt.LeftButton:
            super().mousePressEvent(event)
            return
        scale, target = self._scale()
        self.selector.pointer_down(event.x() - target.left(), event.y() - target.top(), scale)
        self.update()

    def mouseMoveEvent(self, event) -> None:
        if not self.selector.is_selecting:
            super().mouseMoveEvent(event)
            return
        scale, target = self._scale()
        self.selector.pointer_move(event.x() - target.left(), event.y() - target.top(), scale)
        self.update()

    def mouseReleaseEvent(self, event) -> None:
        self.selector.pointer_up()
        self.update()
        super().mouseReleaseEvent(event)

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.fillRect(self.rect(), QColor("#2b2b2b"))
        target = self._target_rect()
        if not self._pixmap.isNull():
            painter.drawPixmap(target, self._pixmap, QRectF(self._pixmap.rect()))
        if self.selector.has_selection:
            scale, _ = self._scale()
            rect = self.selector.selection_rect()
            top_left = scale.to_display(Point(rect.x, rect.y))
            bottom_right = scale.to_display(Point(rect.right, rect.bottom))
            sel = QRectF(
                QPointF(target.left() + top_left.x, target.top() + top_left.y),
                QPointF(target.left() + bottom_right.x, target.top() + bottom_right.y),
            )
            painter.setPen(QPen(QColor("#1e88e5"), 2, Qt.DashLine))
            painter.fillRect(sel, QColor(30, 136, 229, 40))
            painter.drawRect(sel)
        painter.end()


class CropDialog(QDialog):
    def __init__(self, pages: List[PageArtifact], events: EventBus, parent: Optional[QWidget] = None) -> None:
        super().__init__(parent)
        self.setWindowTitle("Crop image from page")
        self.result_image: Optional[str] = None
        self.selector = CropSelector(pages, events=events)
        self.canvas = PageCanvas(self.selector, self)

        self.prev_btn = QPushButton("< Prev")
        self.next_btn = QPushButton("Next >")
        self.page_label = QLabel()
        self.prev_btn.clicked.connect(lambda: self._go(-1))
        self.next_btn.clicked.connect(lambda: self._go(1))

        nav = QHBoxLayout()
        nav.addWidget(self.prev_btn)
        nav.addWidget(self.page_label, 1, Qt.AlignCenter)
        nav.addWidget(self.next_btn)

        buttons = QDialogButtonBox(QDialogButtonBox.Ok | QDialogButtonBox.Cancel)
        buttons.button(QDialogButtonBox.Ok).setText("Confirm crop")
        buttons.accepted.connect(self._confirm)
        buttons.rejected.connect(self.reject)

        layout = QVBoxLayout(self)
        layout.addLayout(nav)
        layout.addWidget(self.canvas, 1)
        layout.addWidget(buttons)
        self.resize(900, 1000)
        self._update_nav()

    def _update_nav(self) -> None:
        idx = self.selector.current_page
        self.page_label.setText(f"Page {self.selector.page.page_number} ({idx + 1}/{len(self.selector.pages)})")
        self.prev_btn.setEnabled(idx > 0)
        self.next_btn.setEnabled(idx < len(self.selector.pages) - 1)

    def _go(self, delta: int) -> None:
        target = self.selector.current_page + delta
        if 0 <= target < len(self.selector.pages):
            self.selector.set_page(target)
            self.canvas.reload_page()
            self._update_nav()

    def _on_complete(self, data_uri: str) -> None:
        self.result_image = data_uri
        self.accept()

    def _confirm(self) -> None:
        self.selector.confirm(self._on_complete, on_warning=lambda msg: QMessageBox.warning(self, "Crop", msg))


class EventBridge(QObject):
    """Re-emits bus events as a Qt signal so worker-thread events reach the GUI thread."""

    event_received = pyqtSignal(object)

    def __call__(self, event: Event) -> None:
        self.event_received.emit(event)


class ExtractionWorker(QObject):
    completed = pyqtSignal(object, object)
    failed = pyqtSignal(str)
    finished = pyqtSignal()

    def __init__(
        self,
        document_bytes: bytes,
        source_name: str,
        config: AppConfig,
        events: EventBus,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.document_bytes = document_bytes
        self.source_name = source_name
        self.config = config
        self.events = events

    def run(self) -> None:
        try:
            # Rasters are always rendered so reviewers can crop manually in text mode too.
            pages = render_pages(self.document_bytes, self.config, include_images=True, events=self.events)
            result = extract_questions(pages, self.source_name, self.config, events=self.events)
            self.completed.emit(pages, result)
        except (ExamIngestError, ValueError) as exc:
            self.failed.emit(str(exc))
        except Exception as exc:  # pragma: no cover
            self.failed.emit(f"Unexpected extraction failure: {exc!r}")
        finally:
            self.finished.emit()


class ExportWorker(QObject):
    progress = pyqtSignal(int, int)
    completed = pyqtSignal(object)
    failed = pyqtSignal(str)
    finished = pyqtSignal()

    def __init__(
        self,
        questions: List[ResolvedQuestion],
        source_name: str,
        out_dir: Path,
        config: AppConfig,
        upload: bool,
        events: EventBus,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self.questions = questions
        self.source_name = source_name
        self.out_dir = out_dir
        self.config = config
        self.upload = upload
        self.events = events

    def run(self) -> None:
        try:
            store = build_image_store(self.config.storage) if self.upload else None
            ingest_client = IngestClient(self.config.ingest.url, self.config.ingest.timeout_sec) if self.upload else None
            report = run_export(
                self.questions,
                self.source_name,
                self.out_dir,
                store=store,
                ingest_client=ingest_client,
                on_progress=self.progress.emit,
                events=self.events,
            )
            self.completed.emit(report)
        except (ExamIngestError, ValueError, OSError) as exc:
            self.failed.emit(str(exc))
        except Exception as exc:  # pragma: no cover
            self.failed.emit(f"Unexpected export failure: {exc!r}")
        finally:
            self.finished.emit()


class ReviewWindow(QMainWindow):
    def __init__(self, config: AppConfig, document: Optional[Path] = None) -> None:
        super().__init__()
        self.config = config
        self.events = EventBus("exam_ingest.app")
        self._bridge = EventBridge(self)
        self._bridge.event_received.connect(self._append_log)
        self.events.subscribe(self._bridge)

        self.session = ReviewSession([])
        self.pages: List[PageArtifact] = []
        self.document_path: Optional[Path] = None
        self._thread: Optional[QThread] = None
        self._worker: Optional[QObject] = None
        self._loading_form = False

        self.setWindowTitle("Exam Ingest Review")
        self._build_ui()
        self.resize(1400, 900)
        if document is not None:
            self.start_extraction(document)

    def _build_ui(self) -> None:
        toolbar = self.addToolBar("Main")
        self.open_action = QAction("Open paper...", self)
        self.open_action.triggered.connect(self.open_document)
        self.export_action = QAction("Export zip", self)
        self.export_action.triggered.connect(lambda: self.export(upload=False))
        self.upload_action = QAction("Export && upload", self)
        self.upload_action.triggered.connect(lambda: self.export(upload=True))
        for action in (self.open_action, self.export_action, self.upload_action):
            toolbar.addAction(action)

        self.question_list = QListWidget()
        self.question_list.currentRowChanged.connect(self._on_current_question_changed)
        self.question_list.itemChanged.connect(self._on_question_item_changed)
        self.selected_label = QLabel("0 selected")

        left = QWidget()
        left_layout = QVBoxLayout(left)
        left_layout.addWidget(QLabel("Questions"))
        left_layout.addWidget(self.question_list, 1)
        left_layout.addWidget(self.selected_label)

        self.text_edit = QPlainTextEdit()
        self.preview = QLabel()
        self.preview.setWordWrap(True)
        self.preview.setTextFormat(Qt.RichText)
        self.type_combo = QComboBox()
        self.type_combo.addItems([t.value for t in QuestionType])
        self.subject_combo = QComboBox()
        self.subject_combo.addItems([s.value for s in Subject])
        self.difficulty_combo = QComboBox()
        self.difficulty_combo.addItems([d.value for d in Difficulty])
        self.marks_spin = QSpinBox()
        self.marks_spin.setRange(0, 100)
        self.chapter_edit = QLineEdit()
        self.topic_edit = QLineEdit()
        self.answer_edit = QLineEdit()
        self.numerical_edit = QLineEdit()
        self.text_edit.textChanged.connect(self._refresh_preview)

        form = QFormLayout()
        form.addRow("Text", self.text_edit)
        form.addRow("Preview", self.preview)
        form.addRow("Type", self.type_combo)
        form.addRow("Subject", self.subject_combo)
        form.addRow("Difficulty", self.difficulty_combo)
        form.addRow("Marks", self.marks_spin)
        form.addRow("Chapter", self.chapter_edit)
        form.addRow("Topic", self.topic_edit)
        form.addRow("Answer text", self.answer_edit)
        form.addRow("Numerical answer", self.numerical_edit)

        self.image_label = QLabel("No image")
        self.image_label.setMinimumHeight(160)
        self.image_label.setAlignment(Qt.AlignCenter)
        crop_btn = QPushButton("Crop image...")
        crop_btn.clicked.connect(self.crop_question_image)
        remove_img_btn = QPushButton("Remove image")
        remove_img_btn.clicked.connect(lambda: self._remove_image(self._current_request()))
        image_row = QHBoxLayout()
        image_row.addWidget(crop_btn)
        image_row.addWidget(remove_img_btn)

        self.option_list = QListWidget()
        self.option_list.currentRowChanged.connect(self._on_current_option_changed)
        self.option_text = QLineEdit()
        self.option_correct = QCheckBox("Correct")
        apply_opt_btn = QPushButton("Apply option")
        apply_opt_btn.clicked.connect(self.apply_option_edits)
        add_opt_btn = QPushButton("Add option")
        add_opt_btn.clicked.connect(self.add_option)
        del_opt_btn = QPushButton("Remove option")
        del_opt_btn.clicked.connect(self.remove_option)
        crop_opt_btn = QPushButton("Crop option image...")
        crop_opt_btn.clicked.connect(self.crop_option_image)
        remove_opt_img_btn = QPushButton("Remove option image")
        remove_opt_img_btn.clicked.connect(lambda: self._remove_image(self._current_option_request()))
        opt_edit_row = QHBoxLayout()
        opt_edit_row.addWidget(self.option_text, 1)
        opt_edit_row.addWidget(self.option_correct)
        opt_edit_row.addWidget(apply_opt_btn)
        opt_btn_row = QHBoxLayout()
        for btn in (add_opt_btn, del_opt_btn, crop_opt_btn, remove_opt_img_btn):
            opt_btn_row.addWidget(btn)

        apply_btn = QPushButton("Apply changes")
        apply_btn.clicked.connect(self.apply_question_edits)
        delete_btn = QPushButton("Delete question")
        delete_btn.clicked.connect(self.delete_question)
        action_row = QHBoxLayout()
        action_row.addWidget(apply_btn)
        action_row.addWidget(delete_btn)

        editor = QWidget()
        editor_layout = QVBoxLayout(editor)
        editor_layout.addLayout(form)
        editor_layout.addWidget(self.image_label)
        editor_layout.addLayout(image_row)
        editor_layout.addWidget(QLabel("Options"))
        editor_layout.addWidget(self.option_list)
        editor_layout.addLayout(opt_edit_row)
        editor_layout.addLayout(opt_btn_row)
        editor_layout.addLayout(action_row)

        self.log_view = QPlainTextEdit()
        self.log_view.setReadOnly(True)
        self.log_view.setMaximumBlockCount(2000)
        self.progress = QProgressBar()
        self.progress.setVisible(False)

        right = QWidget()
        right_layout = QVBoxLayout(right)
        right_layout.addWidget(QLabel("Activity"))
        right_layout.addWidget(self.log_view, 1)
        right_layout.addWidget(self.progress)

        splitter = QSplitter(Qt.Horizontal)
        splitter.addWidget(left)
        splitter.addWidget(editor)
        splitter.addWidget(right)
        splitter.setStretchFactor(1, 2)
        self.setCentralWidget(splitter)

    # ----- log / status -----

    def _append_log(self, event: Event) -> None:
        color = _LEVEL_COLORS.get(event.level, "#444444")
        self.log_view.appendHtml(
            f"<span style='color:#888'>{event.timestamp}</span> "
            f"<span style='color:{color}'>{html.escape(event.message)}</span>"
        )

    def _set_busy(self, busy: bool) -> None:
        for action in (self.open_action, self.export_action, self.upload_action):
            action.setEnabled(not busy)

    def _start_worker(self, worker: QObject, on_done) -> None:
        thread = QThread(self)
        worker.moveToThread(thread)
        thread.started.connect(worker.run)
        worker.finished.connect(thread.quit)
        worker.finished.connect(worker.deleteLater)
        thread.finished.connect(thread.deleteLater)
        thread.finished.connect(on_done)
        self._worker = worker
        self._thread = thread
        self._set_busy(True)
        thread.start()

    def _on_worker_finished(self) -> None:
        self._worker = None
        self._thread = None
        self.progress.setVisible(False)
        self._set_busy(False)

    # ----- extraction -----

    def open_document(self) -> None:
        path, _ = QFileDialog.getOpenFileName(self, "Open exam paper", "", "Documents (*.pdf *.txt);;All files (*)")
        if path:
            self.start_extraction(Path(path))

    def start_extraction(self, path: Path) -> None:
        if self._thread is not None:
            return
        try:
            data = path.read_bytes()
        except OSError as exc:
            QMessageBox.critical(self, "Open failed", str(exc))
            return
        self.document_path = path
        self.session = ReviewSession([], source_name=path.name)
        self.pages = []
        self._rebuild_question_list()
        self.events.info(f"Started processing {path.name}.", source="app")
        worker = ExtractionWorker(data, path.name, self.config, self.events)
        worker.completed.connect(self._on_extraction_completed)
        worker.failed.connect(self._on_worker_failed)
        self._start_worker(worker, self._on_worker_finished)

    def _on_extraction_completed(self, pages: List[PageArtifact], result: Any) -> None:
        self.pages = list(pages)
        self.session = ReviewSession(result.questions, source_name=self.document_path.name if self.document_path else "")
        self._rebuild_question_list()
        if result.failed_windows:
            QMessageBox.warning(
                self,
                "Partial extraction",
                f"{len(result.failed_windows)} page window(s) could not be processed; see the activity log.",
            )

    def _on_worker_failed(self, message: str) -> None:
        self.events.error(message, source="app")
        QMessageBox.critical(self, "Error", message)

    # ----- question list -----

    def _rebuild_question_list(self) -> None:
        self.question_list.blockSignals(True)
        self.question_list.clear()
        for idx, question in enumerate(self.session.questions):
            item = QListWidgetItem(f"{idx + 1}. {' '.join(question.text.split())[:80]}")
            item.setFlags(item.flags() | Qt.ItemIsUserCheckable)
            item.setCheckState(Qt.Checked if question.is_selected else Qt.Unchecked)
            self.question_list.addItem(item)
        self.question_list.blockSignals(False)
        self._update_selected_label()
        if self.session.questions:
            self.question_list.setCurrentRow(0)
        else:
            self._load_form(None)

    def _update_selected_label(self) -> None:
        self.selected_label.setText(f"{self.session.selected_count} of {len(self.session)} selected")

    def _on_question_item_changed(self, item: QListWidgetItem) -> None:
        row = self.question_list.row(item)
        if 0 <= row < len(self.session):
            self.session.set_selected(row, item.checkState() == Qt.Checked)
            self._update_selected_label()

    def _current_index(self) -> int:
        return self.question_list.currentRow()

    def _current_question(self) -> Optional[ResolvedQuestion]:
        idx = self._current_index()
        if 0 <= idx < len(self.session):
            return self.session.questions[idx]
        return None

    def _on_current_question_changed(self, row: int) -> None:
        self._load_form(self._current_question())

    def _load_form(self, question: Optional[ResolvedQuestion]) -> None:
        self._loading_form = True
        try:
            if question is None:
                self.text_edit.setPlainText("")
                self.option_list.clear()
                self._show_image(None)
                return
            self.text_edit.setPlainText(question.text)
            self.type_combo.setCurrentText(question.type.value)
            self.subject_combo.setCurrentText(question.subject.value)
            self.difficulty_combo.setCurrentText(question.difficulty.value)
            self.marks_spin.setValue(question.marks)
            self.chapter_edit.setText(question.chapter)
            self.topic_edit.setText(question.topic)
            self.answer_edit.setText(question.correct_answer_text or "")
            self.numerical_edit.setText(question.numerical_answer or "")
            self._show_image(question.image)
            self._rebuild_option_list(question)
        finally:
            self._loading_form = False
        self._refresh_preview()

    def _refresh_preview(self) -> None:
        self.preview.setText(render_math_html(self.text_edit.toPlainText()))

    def _show_image(self, image: Optional[str]) -> None:
        if not image:
            self.image_label.setPixmap(QPixmap())
            self.image_label.setText("No image")
            return
        pixmap = pixmap_from_data_uri(image) if is_data_uri(image) else None
        if pixmap is None:
            self.image_label.setText(image)
            return
        self.image_label.setPixmap(pixmap.scaled(480, 240, Qt.KeepAspectRatio, Qt.SmoothTransformation))

    def apply_question_edits(self) -> None:
        idx = self._current_index()
        if self._current_question() is None:
            return
        updates = {
            "text": self.text_edit.toPlainText(),
            "type": self.type_combo.currentText(),
            "subject": self.subject_combo.currentText(),
            "difficulty": self.difficulty_combo.currentText(),
            "marks": self.marks_spin.value(),
            "chapter": self.chapter_edit.text(),
            "topic": self.topic_edit.text(),
            "correct_answer_text": self.answer_edit.text() or None,
            "numerical_answer": self.numerical_edit.text() or None,
        }
        try:
            for name, value in updates.items():
                self.session.update_field(idx, name, value)
        except (ValidationError, KeyError) as exc:
            QMessageBox.warning(self, "Invalid value", str(exc))
            return
        item = self.question_list.item(idx)
        if item is not None:
            self.question_list.blockSignals(True)
            item.setText(f"{idx + 1}. {' '.join(self.session.questions[idx].text.split())[:80]}")
            self.question_list.blockSignals(False)
        self._rebuild_option_list(self.session.questions[idx])
        self.statusBar().showMessage("Saved question changes.", 2000)

    def delete_question(self) -> None:
        idx = self._current_index()
        if self._current_question() is None:
            return
        self.session.delete(idx)
        self._rebuild_question_list()
        if self.session.questions:
            self.question_list.setCurrentRow(min(idx, len(self.session) - 1))

    # ----- options -----

    def _rebuild_option_list(self, question: ResolvedQuestion) -> None:
        current = self.option_list.currentRow()
        self.option_list.clear()
        for idx, option in enumerate(question.options):
            mark = "[x]" if option.is_correct else "[ ]"
            suffix = " (image)" if option.image else ""
            self.option_list.addItem(f"{mark} {chr(ord('A') + idx) if idx < 26 else idx + 1}. {option.text}{suffix}")
        if 0 <= current < self.option_list.count():
            self.option_list.setCurrentRow(current)

    def _on_current_option_changed(self, row: int) -> None:
        question = self._current_question()
        if question is None or not (0 <= row < len(question.options)):
            self.option_text.setText("")
            self.option_correct.setChecked(False)
            return
        option = question.options[row]
        self.option_text.setText(option.text)
        self.option_correct.setChecked(option.is_correct)

    def apply_option_edits(self) -> None:
        q_idx, o_idx = self._current_index(), self.option_list.currentRow()
        question = self._current_question()
        if question is None or not (0 <= o_idx < len(question.options)):
            return
        self.session.update_option(q_idx, o_idx, "text", self.option_text.text())
        self.session.update_option(q_idx, o_idx, "is_correct", self.option_correct.isChecked())
        self._rebuild_option_list(question)

    def add_option(self) -> None:
        question = self._current_question()
        if question is None:
            return
        self.session.add_option(self._current_index())
        self._rebuild_option_list(question)
        self.option_list.setCurrentRow(len(question.options) - 1)

    def remove_option(self) -> None:
        question = self._current_question()
        o_idx = self.option_list.currentRow()
        if question is None or not (0 <= o_idx < len(question.options)):
            return
        self.session.remove_option(self._current_index(), o_idx)
        self._rebuild_option_list(question)

    # ----- cropping -----

    def _current_request(self) -> Optional[CropRequest]:
        if self._current_question() is None:
            return None
        return CropRequest.for_question(self._current_index())

    def _current_option_request(self) -> Optional[CropRequest]:
        question = self._current_question()
        o_idx = self.option_list.currentRow()
        if question is None or not (0 <= o_idx < len(question.options)):
            return None
        return CropRequest.for_option(self._current_index(), o_idx)

    def crop_question_image(self) -> None:
        self._open_crop(self._current_request())

    def crop_option_image(self) -> None:
        self._open_crop(self._current_option_request())

    def _open_crop(self, request: Optional[CropRequest]) -> None:
        if request is None:
            return
        if not any(p.has_raster for p in self.pages):
            QMessageBox.information(self, "Crop", "No rendered pages are available for cropping.")
            return
        dialog = CropDialog(self.pages, self.events, self)
        if dialog.exec_() != QDialog.Accepted or dialog.result_image is None:
            return
        self.session.apply_crop(request, dialog.result_image)
        self.events.success("Image cropped and attached.", source="crop")
        self._refresh_after_image_change(request)

    def _remove_image(self, request: Optional[CropRequest]) -> None:
        if request is None:
            return
        self.session.remove_image(request)
        self._refresh_after_image_change(request)

    def _refresh_after_image_change(self, request: CropRequest) -> None:
        question = self.session.questions[request.question_index]
        if request.target == CropTarget.question:
            self._show_image(question.image)
        else:
            self._rebuild_option_list(question)

    # ----- export -----

    def export(self, upload: bool) -> None:
        if self._thread is not None:
            return
        selected = self.session.selected()
        if not selected:
            QMessageBox.information(self, "Export", "No questions selected.")
            return
        out_dir = QFileDialog.getExistingDirectory(self, "Export to directory", str(Path.cwd()))
        if not out_dir:
            return
        self.progress.setValue(0)
        self.progress.setVisible(upload)
        worker = ExportWorker(
            list(self.session.questions),
            self.session.source_name,
            Path(out_dir),
            self.config,
            upload,
            self.events,
        )
        worker.progress.connect(self._on_export_progress)
        worker.completed.connect(self._on_export_completed)
        worker.failed.connect(self._on_worker_failed)
        self._start_worker(worker, self._on_worker_finished)

    def _on_export_progress(self, current: int, total: int) -> None:
        self.progress.setMaximum(max(total, 1))
        self.progress.setValue(current)
        self.progress.setFormat(f"Uploading {current}/{total}")

    def _on_export_completed(self, report: Any) -> None:
        message = f"Exported {report.question_count} question(s) to {report.archive_path}."
        if report.warnings:
            message += "\n\n" + "\n".join(report.warnings)
        QMessageBox.information(self, "Export complete", message)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Review and export questions extracted from exam papers.")
    parser.add_argument("document", nargs="?", default=None, help="Optional PDF/text file to process on startup.")
    parser.add_argument("--config", default=None, help="Path to exam_ingest.toml.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    try:
        config = load_config(args.config)
    except ConfigurationError as exc:
        print(str(exc), file=sys.stderr)
        return 1

    document = Path(args.document) if args.document else None
    if document is not None and not document.is_file():
        print(f"Document not found: {document}", file=sys.stderr)
        return 1

    if hasattr(Qt, "AA_EnableHighDpiScaling"):
        QApplication.setAttribute(Qt.AA_EnableHighDpiScaling, True)
    if hasattr(Qt, "AA_UseHighDpiPixmaps"):
        QApplication.setAttribute(Qt.AA_UseHighDpiPixmaps, True)

    app = QApplication(sys.argv)
    window = ReviewWindow(config=config, document=document)
    window.show()
    return app.exec_()


if __name__ == "__main__":
    raise SystemExit(main())
