"""Main application window."""

import logging
import queue
import threading
import tkinter as tk
from tkinter import ttk, messagebox, filedialog
from typing import Callable, Dict, Optional, Sequence

from ..config.settings import ConfigStore
from ..core.entities import RegionOfInterest, SceneRole
from ..core.events import StatusChannel, StatusEvent, StatusLevel, StatusTopic
from ..core.exceptions import ApplicationError, ConfigError, ValidationError
from ..services.match_scorer import capture_template, load_template_file
from ..services.monitoring_session import MonitoringSession
from ..services.scene_controller import SceneController, SceneList
from ..services.screen_capture import ScreenCaptureService
from ..utils.file_utils import write_text_file
from .components.status_bar import StatusBar

logger = logging.getLogger(__name__)

POLL_INTERVAL_MS = 100
MAX_LOG_LINES = 2000
# Topics whose events are echoed into the log panel besides mirrored log records
LOGGED_TOPICS = {StatusTopic.OBS, StatusTopic.MONITOR, StatusTopic.SCENE,
                 StatusTopic.TEMPLATE, StatusTopic.LOG}


def parse_roi(values: Sequence[str]) -> Optional[RegionOfInterest]:
    """Build a ROI from the four entry strings; all blank means no ROI.

    Raises:
        ValidationError: If a value is not an integer or the ROI is invalid
    """
    stripped = [v.strip() for v in values]
    if not any(stripped):
        return None
    try:
        x, y, width, height = (int(v) for v in stripped)
    except ValueError as e:
        raise ValidationError(f"ROI values must be whole numbers: {e}") from e
    return RegionOfInterest(x, y, width, height)


def parse_port(value: str) -> int:
    try:
        port = int(value.strip())
    except ValueError as e:
        raise ValidationError(f"Invalid port '{value}'") from e
    if not 1 <= port <= 65535:
        raise ValidationError(f"Port {port} must be between 1 and 65535")
    return port


class MainWindow:
    """Main application window."""

    def __init__(self, root: tk.Tk, store: ConfigStore, status: StatusChannel,
                 controller: Optional[SceneController] = None,
                 session_factory: Callable[..., MonitoringSession] = MonitoringSession):
        self.root = root
        self.store = store
        self.status = status
        config = store.get()
        self.controller = controller or SceneController(timeout=config.obs_timeout, status=status)
        self._session_factory = session_factory
        self.session: Optional[MonitoringSession] = None

        # Work finished on background threads, run on the Tk thread
        self._ui_tasks: "queue.Queue[Callable[[], None]]" = queue.Queue()
        self._connecting = False
        self._poll_job = None

        self._setup_window()
        self._build_ui()
        self._load_fields()
        self._poll_status()

    def _setup_window(self):
        """Setup main window properties."""
        self.root.title("AutoScene - OBS Scene Switcher")
        self.root.geometry("820x640")
        self.root.protocol("WM_DELETE_WINDOW", self.on_close)

        # Configure grid weights
        self.root.grid_rowconfigure(5, weight=1)
        self.root.grid_columnconfigure(0, weight=1)

    def _build_ui(self):
        """Build the main user interface."""
        self._build_connection_panel()
        self._build_scene_panel()
        self._build_detection_panel()
        self._build_monitor_controls()
        self._build_status_area()

    def _build_connection_panel(self):
        frame = ttk.LabelFrame(self.root, text="OBS Connection")
        frame.grid(row=0, column=0, sticky='ew', padx=4, pady=2)

        self.host_var = tk.StringVar()
        self.port_var = tk.StringVar()
        self.password_var = tk.StringVar()

        ttk.Label(frame, text="Host").pack(side='left', padx=(4, 2))
        ttk.Entry(frame, textvariable=self.host_var, width=22).pack(side='left', padx=2)
        ttk.Label(frame, text="Port").pack(side='left', padx=(8, 2))
        ttk.Entry(frame, textvariable=self.port_var, width=6).pack(side='left', padx=2)
        ttk.Label(frame, text="Password").pack(side='left', padx=(8, 2))
        ttk.Entry(frame, textvariable=self.password_var, width=16, show='*').pack(side='left', padx=2)

        self.connect_button = ttk.Button(frame, text="Connect", command=self.toggle_connection)
        self.connect_button.pack(side='left', padx=(8, 2))

    def _build_scene_panel(self):
        frame = ttk.LabelFrame(self.root, text="Scenes")
        frame.grid(row=1, column=0, sticky='ew', padx=4, pady=2)

        self.scene_vars: Dict[SceneRole, tk.StringVar] = {}
        self.scene_boxes: Dict[SceneRole, ttk.Combobox] = {}
        for role in SceneRole:
            ttk.Label(frame, text=role.value.title()).pack(side='left', padx=(4, 2))
            var = tk.StringVar()
            box = ttk.Combobox(frame, textvariable=var, width=18, state='readonly')
            box.pack(side='left', padx=2)
            box.bind('<<ComboboxSelected>>', lambda _e: self.save_scene_mapping())
            self.scene_vars[role] = var
            self.scene_boxes[role] = box

        ttk.Button(frame, text="Refresh", command=self.refresh_scenes).pack(side='left', padx=(8, 2))

    def _build_detection_panel(self):
        frame = ttk.LabelFrame(self.root, text="Death Detection")
        frame.grid(row=2, column=0, sticky='ew', padx=4, pady=2)

        row1 = ttk.Frame(frame)
        row1.pack(fill='x', pady=2)
        self.roi_vars = [tk.StringVar() for _ in range(4)]
        for caption, var in zip(("X", "Y", "W", "H"), self.roi_vars):
            ttk.Label(row1, text=caption).pack(side='left', padx=(4, 2))
            ttk.Entry(row1, textvariable=var, width=6).pack(side='left', padx=2)

        ttk.Label(row1, text="Map key").pack(side='left', padx=(12, 2))
        self.map_key_var = tk.StringVar()
        ttk.Entry(row1, textvariable=self.map_key_var, width=8).pack(side='left', padx=2)

        row2 = ttk.Frame(frame)
        row2.pack(fill='x', pady=2)
        ttk.Label(row2, text="Threshold").pack(side='left', padx=(4, 2))
        self.threshold_scale = ttk.Scale(
            row2, from_=0, to=100, orient='horizontal', length=180,
            command=lambda v: self.threshold_label.configure(text=f"{float(v):.0f}%")
        )
        self.threshold_scale.pack(side='left', padx=2)
        self.threshold_scale.bind('<ButtonRelease-1>', lambda _e: self.apply_threshold())
        self.threshold_label = ttk.Label(row2, text="--%", width=5)
        self.threshold_label.pack(side='left', padx=2)

        row3 = ttk.Frame(frame)
        row3.pack(fill='x', pady=2)
        ttk.Button(row3, text="Capture Template", command=self.capture_template).pack(side='left', padx=2)
        ttk.Button(row3, text="Load Template...", command=self.load_template).pack(side='left', padx=2)
        ttk.Button(row3, text="Clear ROI", command=self.clear_roi).pack(side='left', padx=2)
        ttk.Button(row3, text="Save Settings", command=self.save_settings).pack(side='left', padx=(12, 2))

    def _build_monitor_controls(self):
        frame = ttk.Frame(self.root)
        frame.grid(row=3, column=0, sticky='ew', padx=4, pady=2)

        ttk.Button(frame, text="Start Monitoring", command=self.start_monitoring).pack(side='left', padx=2)
        ttk.Button(frame, text="Stop Monitoring", command=self.stop_monitoring).pack(side='left', padx=2)
        ttk.Button(frame, text="Clear Log", command=self.clear_log).pack(side='right', padx=2)
        ttk.Button(frame, text="Save Log...", command=self.save_log).pack(side='right', padx=2)

    def _build_status_area(self):
        """Build the status and log area."""
        self.status_bar = StatusBar(self.root)
        self.status_bar.grid(row=4, column=0, sticky='ew', padx=4, pady=2)

        self.log_text = tk.Text(self.root, width=100, height=14, state='disabled', wrap='word')
        self.log_text.grid(row=5, column=0, padx=4, pady=4, sticky='nsew')

    def _load_fields(self):
        """Populate widgets from the stored configuration."""
        config = self.store.get()
        self.host_var.set(config.obs_host)
        self.port_var.set(str(config.obs_port))
        self.password_var.set(config.obs_password)
        self.map_key_var.set(config.map_key)
        for role, var in self.scene_vars.items():
            name = config.scene_mapping().name_for(role)
            var.set(name)
            self.scene_boxes[role].configure(values=[name] if name else [])

        roi = config.roi()
        for var, value in zip(self.roi_vars, (roi.x, roi.y, roi.width, roi.height) if roi else ("",) * 4):
            var.set(str(value))

        self.threshold_scale.set(config.threshold_percent)
        self.threshold_label.configure(text=f"{config.threshold_percent:.0f}%")

        template = config.template()
        if template is not None:
            self.status_bar.set_badge(StatusTopic.TEMPLATE, f"{template.width}x{template.height}",
                                      StatusLevel.SUCCESS)

    # Connection
    def toggle_connection(self):
        """Connect to OBS, or disconnect when already connected."""
        if self.controller.connected:
            self.stop_monitoring()
            self.controller.disconnect()
            self.connect_button.configure(text="Connect")
            return
        self.connect_obs()

    def connect_obs(self, start_monitoring: Optional[bool] = None):
        """Connect on a worker thread so the window stays responsive."""
        if self._connecting:
            return
        try:
            port = parse_port(self.port_var.get())
        except ValidationError as e:
            self.status.publish(StatusTopic.OBS, "Invalid Port", StatusLevel.DANGER, error=str(e))
            return

        host = self.host_var.get().strip()
        password = self.password_var.get()
        self._store_partial({"obs_host": host, "obs_port": port, "obs_password": password})
        if start_monitoring is None:
            start_monitoring = self.store.get().auto_monitor

        self._connecting = True
        self.connect_button.configure(state='disabled')

        def worker():
            try:
                self.controller.connect(host, port, password)
            except ApplicationError as e:
                logger.error(f"OBS connection failed: {e}")
                self._ui_tasks.put(lambda: self._on_connect_finished(False, None, False))
                return
            # Still connected when only the scene list fails
            scenes = self._fetch_scenes()
            self._ui_tasks.put(lambda: self._on_connect_finished(True, scenes, start_monitoring))

        threading.Thread(target=worker, name="ObsConnect", daemon=True).start()

    def _on_connect_finished(self, ok: bool, scenes, start_monitoring: bool):
        self._connecting = False
        self.connect_button.configure(state='normal', text="Disconnect" if ok else "Connect")
        if not ok:
            return
        if scenes is not None:
            self._populate_scenes(scenes.scenes)
        if start_monitoring:
            self.start_monitoring()

    def refresh_scenes(self):
        """Reload the scene list from OBS on a worker thread."""
        def worker():
            scenes = self._fetch_scenes()
            if scenes is not None:
                self._ui_tasks.put(lambda: self._populate_scenes(scenes.scenes))

        threading.Thread(target=worker, name="ObsSceneList", daemon=True).start()

    def _fetch_scenes(self) -> Optional[SceneList]:
        try:
            return self.controller.list_scenes()
        except ApplicationError as e:
            logger.error(f"Scene list failed: {e}")
            self.status.publish(StatusTopic.OBS, f"Scene list failed: {e}", StatusLevel.DANGER)
            return None

    def _populate_scenes(self, names: Sequence[str]):
        for role, box in self.scene_boxes.items():
            box.configure(values=list(names))
            current = self.scene_vars[role].get()
            if current and current not in names:
                self.status.publish(StatusTopic.SCENE, f"Scene '{current}' not found in OBS",
                                    StatusLevel.WARNING, role=role.value)
        self.status.publish(StatusTopic.LOG, f"Loaded {len(names)} scenes", StatusLevel.INFO)

    def save_scene_mapping(self):
        self._store_partial({f"scene_{role.value}": var.get() for role, var in self.scene_vars.items()})

    # Detection setup
    def capture_template(self):
        """Grab the screen and store the ROI contents as the death template."""
        try:
            roi = parse_roi([v.get() for v in self.roi_vars])
        except ValidationError as e:
            messagebox.showerror("Invalid ROI", str(e))
            return
        if roi is None:
            messagebox.showwarning("Warning", "Enter a region of interest first")
            return

        capture = ScreenCaptureService(self.store.get().capture_monitor)
        try:
            template = capture_template(capture.grab(), roi)
        except ApplicationError as e:
            messagebox.showerror("Capture failed", str(e))
            return
        finally:
            capture.close()
        self._set_template(template, roi, "captured")

    def load_template(self):
        """Load the death template from an image file."""
        path = filedialog.askopenfilename(
            title="Load death template",
            filetypes=[("Images", "*.png *.jpg *.jpeg *.bmp"), ("All files", "*.*")]
        )
        if not path:
            return
        try:
            template = load_template_file(path)
            current = parse_roi([v.get() for v in self.roi_vars])
        except ValidationError as e:
            messagebox.showerror("Load failed", str(e))
            return
        # The template is searched for at the ROI origin
        origin = (current.x, current.y) if current else (0, 0)
        roi = RegionOfInterest(origin[0], origin[1], template.width, template.height)
        for var, value in zip(self.roi_vars, (roi.x, roi.y, roi.width, roi.height)):
            var.set(str(value))
        self._set_template(template, roi, f"loaded from {path}")

    def _set_template(self, template, roi, how: str):
        self._store_partial({"death_roi": roi.to_dict(), "death_template": template.to_dict()})
        if self.session:
            self.session.replace_template(template, roi)
        self.status.publish(StatusTopic.TEMPLATE, f"{template.width}x{template.height}",
                            StatusLevel.SUCCESS)
        logger.info(f"Death template {how}: {template.width}x{template.height} px")

    def clear_roi(self):
        for var in self.roi_vars:
            var.set("")
        if self._store_partial({"death_roi": None, "death_template": None}):
            self._template_cleared()

    def _template_cleared(self):
        if self.session:
            self.session.replace_template(None, None)
        self.status.publish(StatusTopic.TEMPLATE, "None", StatusLevel.SECONDARY)

    def apply_threshold(self):
        percent = round(float(self.threshold_scale.get()))
        self._store_partial({"threshold_percent": percent})
        if self.session:
            self.session.update_threshold(percent / 100.0)

    def save_settings(self):
        """Persist every editable field."""
        partial = {
            "obs_host": self.host_var.get().strip(),
            "obs_password": self.password_var.get(),
            "map_key": self.map_key_var.get(),
            "threshold_percent": round(float(self.threshold_scale.get())),
        }
        partial.update({f"scene_{role.value}": var.get() for role, var in self.scene_vars.items()})
        try:
            partial["obs_port"] = parse_port(self.port_var.get())
            roi = parse_roi([v.get() for v in self.roi_vars])
        except ValidationError as e:
            messagebox.showerror("Invalid settings", str(e))
            return
        if roi is None:
            partial.update(death_roi=None, death_template=None)
        if not self._store_partial(partial):
            return
        if roi is None:
            self._template_cleared()
        self.status.publish(StatusTopic.LOG, "Settings saved", StatusLevel.SUCCESS)

    # Monitoring
    def start_monitoring(self):
        """Start a new monitoring session from the current configuration."""
        if self.session and self.session.running:
            return
        self.session = self._session_factory(self.store.get(), self.controller, status=self.status)
        self.session.start()
        self._store_partial({"monitoring": True})

    def stop_monitoring(self):
        if not self.session:
            return
        self.session.stop()
        self.session = None
        self._store_partial({"monitoring": False})

    def auto_start(self):
        """Apply the auto-connect / auto-monitor startup flags."""
        config = self.store.get()
        if config.auto_connect:
            self.connect_obs(start_monitoring=config.auto_monitor)

    # Status and log
    def _poll_status(self):
        """Drain background work and status events on the Tk thread."""
        while True:
            try:
                task = self._ui_tasks.get_nowait()
            except queue.Empty:
                break
            try:
                task()
            except Exception as e:
                logger.error(f"UI task failed: {e}", exc_info=True)

        for event in self.status.drain(limit=500):
            self.handle_status(event)
        self._poll_job = self.root.after(POLL_INTERVAL_MS, self._poll_status)

    def handle_status(self, event: StatusEvent):
        self.status_bar.apply(event)
        if event.topic in LOGGED_TOPICS:
            self.append_log(event.text if event.topic is StatusTopic.LOG
                            else f"[{event.topic.value}] {event.text}")

    def append_log(self, message: str):
        self.log_text.configure(state='normal')
        self.log_text.insert(tk.END, message + "\n")
        lines = int(self.log_text.index('end-1c').split('.')[0])
        if lines > MAX_LOG_LINES:
            self.log_text.delete('1.0', f"{lines - MAX_LOG_LINES}.0")
        self.log_text.see(tk.END)
        self.log_text.configure(state='disabled')

    def clear_log(self):
        self.log_text.configure(state='normal')
        self.log_text.delete('1.0', tk.END)
        self.log_text.configure(state='disabled')

    def save_log(self):
        path = filedialog.asksaveasfilename(
            title="Save log", defaultextension=".txt",
            filetypes=[("Text files", "*.txt"), ("All files", "*.*")]
        )
        if not path:
            return
        try:
            write_text_file(path, self.log_text.get('1.0', 'end-1c'))
        except OSError as e:
            messagebox.showerror("Save failed", f"Could not save log: {e}")
            return
        logger.info(f"Log saved to {path}")

    def _store_partial(self, partial: dict) -> bool:
        try:
            self.store.set(partial)
            return True
        except ConfigError as e:
            logger.error(f"Could not save settings: {e}")
            self.status.publish(StatusTopic.LOG, f"Could not save settings: {e}", StatusLevel.DANGER)
            return False

    def on_close(self):
        """Stop monitoring, disconnect and close the window."""
        if self.session:
            self.session.stop()
            self.session = None
        self.controller.disconnect()
        if self._poll_job is not None:
            self.root.after_cancel(self._poll_job)
        self.root.destroy()
