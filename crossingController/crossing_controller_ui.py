"""Crossing Controller UI module.

This module provides the PyQt6-based operator console for the crossing
controller: phase and timer display, car and train tables, an event table,
a system log tab and buttons that issue requests as a chosen identity.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Callable, Optional

from PyQt6.QtCore import Qt, QTimer
from PyQt6.QtGui import QColor, QFont, QTextCursor
from PyQt6.QtWidgets import (
    QComboBox,
    QGridLayout,
    QHBoxLayout,
    QHeaderView,
    QLabel,
    QLineEdit,
    QMessageBox,
    QPushButton,
    QSizePolicy,
    QSpinBox,
    QTableWidget,
    QTableWidgetItem,
    QTabWidget,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

_PKG_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if _PKG_ROOT not in sys.path:
    sys.path.append(_PKG_ROOT)

from crossingController.crossing_controller_backend import (
    CrossingControllerBackend,
    CrossingException,
)
from universal.universal import CrossingEvent, CrossingEventType, CrossingState

logger = logging.getLogger(__name__)

STATE_COLORS = {
    CrossingState.FREE_TO_CROSS: QColor('#2e7d32'),
    CrossingState.PRE_LOCKED: QColor('#f9a825'),
    CrossingState.LOCKED: QColor('#c62828'),
}


class QTextEditLogger(logging.Handler):
    """Custom logging handler that outputs to a QTextEdit widget."""

    def __init__(self, text_edit: QTextEdit) -> None:
        super().__init__()
        self.text_edit = text_edit
        self.setFormatter(
            logging.Formatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')
        )

    def emit(self, record: logging.LogRecord) -> None:
        msg = self.format(record)
        self.text_edit.append(msg)
        self.text_edit.moveCursor(QTextCursor.MoveOperation.End)


class CrossingControllerUI(QWidget):
    """Operator console for a single level crossing.

    Requests are issued as the identity typed into the caller field, so the
    same window can act as the infrastructure operator, a train or a car.
    """

    REFRESH_INTERVAL_MS = 500

    def __init__(
        self,
        backend: CrossingControllerBackend,
        parent: Optional[QWidget] = None,
    ) -> None:
        """Initialize the Crossing Controller UI.

        Args:
            backend: The crossing controller to operate.
            parent: Optional parent widget.
        """
        super().__init__(parent)
        self.backend = backend

        self.bold_font = QFont()
        self.bold_font.setBold(True)
        self.big_font = QFont(self.bold_font)
        self.big_font.setPointSize(self.bold_font.pointSize() * 2)

        self.resize(1100, 750)

        self._build_ui()
        self._setup_logging()

        self.backend.add_listener(self._on_crossing_event)

        # Clock ticks arrive on the clock thread, so poll from the GUI thread.
        self.refresh_timer = QTimer(self)
        self.refresh_timer.timeout.connect(self.refresh_tables)
        self.refresh_timer.start(self.REFRESH_INTERVAL_MS)

        self.refresh_tables()

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------
    def _build_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(8, 8, 8, 8)
        layout.setSpacing(8)

        self._build_top_row(layout)

        self.main_tabs = QTabWidget()
        self.main_tabs.setFont(self.bold_font)
        self.main_tabs.setSizePolicy(
            QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding
        )
        self._build_tables_tab()
        self._build_logs_tab()
        self.main_tabs.addTab(self.table_widget, 'Status Tables')
        self.main_tabs.addTab(self.logs_widget, 'System Logs')
        layout.addWidget(self.main_tabs, stretch=1)

        self._build_bottom_row(layout)

    def _build_top_row(self, parent_layout: QVBoxLayout) -> None:
        top_row = QHBoxLayout()
        top_row.setSpacing(10)

        title = QLabel('Level Crossing')
        title.setFont(self.big_font)
        top_row.addWidget(title)
        top_row.addStretch()

        self.state_label = QLabel()
        self.state_label.setFont(self.big_font)
        self.state_label.setMinimumWidth(260)
        self.state_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        top_row.addWidget(self.state_label)

        self.clock_label = QLabel('Time: 0:00:00')
        self.clock_label.setFont(self.big_font)
        self.clock_label.setMinimumWidth(220)
        self.clock_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.clock_label.setStyleSheet(
            'QLabel { border: 2px solid gray; padding: 5px; }'
        )
        top_row.addWidget(self.clock_label)

        parent_layout.addLayout(top_row)

    def _build_tables_tab(self) -> None:
        self.table_widget = QWidget()
        table_layout = QGridLayout(self.table_widget)
        table_layout.setContentsMargins(5, 5, 5, 5)
        table_layout.setSpacing(8)

        self.tablestatus = self._make_table()
        self.tablecars = self._make_table()
        self.tabletrains = self._make_table()
        self.tableevents = self._make_table()

        table_layout.addWidget(self.tablestatus, 0, 0)
        table_layout.addWidget(self.tablecars, 0, 1)
        table_layout.addWidget(self.tabletrains, 0, 2)
        table_layout.addWidget(self.tableevents, 1, 0, 1, 3)
        table_layout.setRowStretch(1, 2)

    def _build_logs_tab(self) -> None:
        self.logs_widget = QWidget()
        logs_layout = QVBoxLayout(self.logs_widget)
        logs_layout.setContentsMargins(5, 5, 5, 5)

        logs_header = QHBoxLayout()
        logs_title = QLabel('System Logs')
        logs_title.setFont(self.big_font)
        logs_header.addWidget(logs_title)
        logs_header.addStretch()

        self.log_level_combo = QComboBox()
        self.log_level_combo.addItems(['DEBUG', 'INFO', 'WARNING', 'ERROR'])
        self.log_level_combo.setCurrentText('INFO')
        self.log_level_combo.currentTextChanged.connect(self._on_log_level_changed)
        logs_header.addWidget(self.log_level_combo)

        clear_logs_btn = QPushButton('Clear Logs')
        clear_logs_btn.clicked.connect(self._clear_logs)
        logs_header.addWidget(clear_logs_btn)
        logs_layout.addLayout(logs_header)

        self.logs_display = QTextEdit()
        self.logs_display.setReadOnly(True)
        self.logs_display.setFont(QFont('Courier', 9))
        self.logs_display.setLineWrapMode(QTextEdit.LineWrapMode.NoWrap)
        logs_layout.addWidget(self.logs_display)

    def _build_bottom_row(self, parent_layout: QVBoxLayout) -> None:
        controls = QGridLayout()
        controls.setSpacing(8)

        caller_label = QLabel('Caller:')
        caller_label.setFont(self.bold_font)
        controls.addWidget(caller_label, 0, 0)
        self.caller_box = QLineEdit(str(self.backend.infrastructure))
        self.caller_box.setFont(self.bold_font)
        controls.addWidget(self.caller_box, 0, 1)

        target_label = QLabel('Train:')
        target_label.setFont(self.bold_font)
        controls.addWidget(target_label, 0, 2)
        self.train_box = QLineEdit()
        self.train_box.setPlaceholderText('train identity to (de)authorize')
        controls.addWidget(self.train_box, 0, 3)

        self.authorize_button = self._add_button(
            controls, 1, 0, 'Authorize Train',
            lambda caller: self.backend.authorize_train(caller, self._train_text()),
        )
        self.deauthorize_button = self._add_button(
            controls, 1, 1, 'Deauthorize Train',
            lambda caller: self.backend.deauthorize_train(caller, self._train_text()),
        )
        self.free_button = self._add_button(
            controls, 1, 2, 'Free To Cross', self.backend.update_free_to_cross_state
        )

        self.car_request_button = self._add_button(
            controls, 2, 0, 'Request Car Permission', self.backend.request_car_permission
        )
        self.car_release_button = self._add_button(
            controls, 2, 1, 'Release Car Permission', self.backend.release_car_permission
        )
        self.train_request_button = self._add_button(
            controls, 2, 2, 'Request Train Crossing', self.backend.request_train_crossing
        )
        self.train_release_button = self._add_button(
            controls, 2, 3, 'Release Train Crossing', self.backend.release_train_crossing
        )

        self.advance_spin = QSpinBox()
        self.advance_spin.setRange(1, 3600)
        self.advance_spin.setValue(60)
        self.advance_spin.setSuffix(' s')
        controls.addWidget(self.advance_spin, 1, 3)
        self.advance_button = QPushButton('Advance Clock')
        self.advance_button.setFont(self.bold_font)
        self.advance_button.clicked.connect(self._on_advance_clock)
        controls.addWidget(self.advance_button, 1, 4)

        parent_layout.addLayout(controls)

    def _add_button(
        self,
        grid: QGridLayout,
        row: int,
        col: int,
        text: str,
        action: Callable[[str], object],
    ) -> QPushButton:
        button = QPushButton(text)
        button.setFont(self.bold_font)
        button.setMinimumHeight(40)
        button.clicked.connect(lambda _checked=False: self._run_action(text, action))
        grid.addWidget(button, row, col)
        return button

    def _make_table(self) -> QTableWidget:
        table = QTableWidget()
        table.setFont(self.bold_font)
        table.setEditTriggers(QTableWidget.EditTrigger.NoEditTriggers)
        table.verticalHeader().setVisible(False)
        return table

    def _setup_logging(self) -> None:
        self.log_handler = QTextEditLogger(self.logs_display)
        self.log_handler.setLevel(logging.INFO)
        logging.getLogger().addHandler(self.log_handler)
        logger.info('Crossing Controller UI initialized with logging tab')

    def closeEvent(self, event) -> None:
        self.refresh_timer.stop()
        self.backend.remove_listener(self._on_crossing_event)
        logging.getLogger().removeHandler(self.log_handler)
        super().closeEvent(event)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def caller(self) -> str:
        return self.caller_box.text().strip()

    def _train_text(self) -> str:
        return self.train_box.text().strip()

    def _run_action(self, title: str, action: Callable[[str], object]) -> None:
        caller = self.caller()
        if not caller:
            QMessageBox.warning(self, title, 'Enter a caller identity first.')
            return
        try:
            action(caller)
        except CrossingException as exc:
            QMessageBox.warning(self, f'{title} Rejected', str(exc))
        except Exception:
            logger.exception('%s failed for %s', title, caller)
            QMessageBox.critical(
                self, f'{title} Failed', 'Unexpected error. Check logs for details.'
            )
        self.refresh_tables()

    def _on_advance_clock(self) -> None:
        seconds = self.advance_spin.value()
        self.backend.clock.advance(seconds)
        logger.info('Clock advanced by %ds', seconds)
        self.refresh_tables()

    def _on_crossing_event(self, event: CrossingEvent) -> None:
        if event.event_type is CrossingEventType.STOP_TRAIN:
            QMessageBox.critical(
                self,
                'STOP TRAIN',
                f'Train {event.identity} must stop: cars overstayed the grace period.',
            )

    def _on_log_level_changed(self, level_str: str) -> None:
        self.log_handler.setLevel(getattr(logging, level_str, logging.INFO))
        logger.info('Log level changed to %s', level_str)

    def _clear_logs(self) -> None:
        self.logs_display.clear()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------
    def refresh_tables(self) -> None:
        """Refresh every view with the current backend state."""
        try:
            report = self.backend.report_state()
            state = self.backend.state
            self.state_label.setText(state.name.replace('_', ' '))
            self.state_label.setStyleSheet(
                f'QLabel {{ color: white; padding: 5px; '
                f'background-color: {STATE_COLORS[state].name()}; }}'
            )
            self.clock_label.setText(f'Time: {self.backend.clock.get_time_string()}')
            self._refresh_status_table(report)
            self._fill_single_column(
                self.tablecars,
                f'Cars ({len(report["cars_with_permission"])}/{report["max_cars"]})',
                report['cars_with_permission'],
                'No cars',
            )
            self._fill_single_column(
                self.tabletrains, 'Authorized Trains', report['authorized_trains'], 'No trains'
            )
            self._refresh_events_table()
        except Exception:
            logger.exception('Failed to refresh tables')

    def _refresh_status_table(self, report: dict) -> None:
        rows = [
            ('Infrastructure', report['infrastructure']),
            ('Free-to-cross duration', f'{report["free_to_cross_duration"]} s'),
            ('Pre-locked duration', f'{report["pre_locked_duration"]} s'),
            ('Free-to-cross since', report['free_to_cross_since']),
            ('Pre-locked since', report['pre_locked_since']),
            ('Free-to-cross remaining', f'{report["free_to_cross_remaining"]} s'),
            ('Grace remaining', f'{report["pre_locked_remaining"]} s'),
        ]
        table = self.tablestatus
        table.setRowCount(len(rows))
        table.setColumnCount(2)
        table.setHorizontalHeaderLabels(['Field', 'Value'])
        table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        for i, (name, value) in enumerate(rows):
            table.setItem(i, 0, QTableWidgetItem(name))
            table.setItem(i, 1, QTableWidgetItem(str(value)))

    def _fill_single_column(
        self, table: QTableWidget, header: str, values: list, empty: str
    ) -> None:
        table.setColumnCount(1)
        table.setHorizontalHeaderLabels([header])
        table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        if not values:
            table.setRowCount(1)
            table.setItem(0, 0, QTableWidgetItem(empty))
            return
        table.setRowCount(len(values))
        for i, value in enumerate(values):
            table.setItem(i, 0, QTableWidgetItem(value))

    def _refresh_events_table(self) -> None:
        events = list(reversed(self.backend.event_history))
        table = self.tableevents
        headers = ['Time', 'Event', 'Identity', 'Granted']
        table.setColumnCount(len(headers))
        table.setHorizontalHeaderLabels(headers)
        table.horizontalHeader().setSectionResizeMode(QHeaderView.ResizeMode.Stretch)
        table.setRowCount(len(events))
        for i, event in enumerate(events):
            table.setItem(i, 0, QTableWidgetItem(str(event.timestamp)))
            item = QTableWidgetItem(event.event_type.value)
            if event.event_type is CrossingEventType.STOP_TRAIN:
                item.setForeground(STATE_COLORS[CrossingState.LOCKED])
            table.setItem(i, 1, item)
            table.setItem(i, 2, QTableWidgetItem(str(event.identity)))
            granted = '' if event.granted is None else str(event.granted)
            table.setItem(i, 3, QTableWidgetItem(granted))
