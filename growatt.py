"""Growatt cloud portal client and telemetry snapshot model."""
from dataclasses import dataclass, field
from datetime import datetime, date
import hashlib
import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://server.growatt.com"
REQUEST_TIMEOUT = 15


class ConnectivityError(Exception):
    """Telemetry source unreachable or credentials rejected."""


class MissingDataError(Exception):
    """Snapshot lacks the expected plant, device or weather structure."""


def hash_password(password):
    """Hash a password the way the Growatt portal expects it.

    MD5 hex digest where every '0' at an even index is replaced by 'c'.
    """
    digest = hashlib.md5(password.encode("utf-8")).hexdigest()
    chars = list(digest)
    for i in range(0, len(chars), 2):
        if chars[i] == "0":
            chars[i] = "c"
    return "".join(chars)


def parse_timestamp(value):
    """Parse a portal timestamp ("2026-10-19 14:05:00") into a datetime."""
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    for fmt in ("%Y-%m-%d %H:%M:%S", "%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M:%S"):
        try:
            return datetime.strptime(str(value), fmt)
        except ValueError:
            continue
    return None


@dataclass
class Snapshot:
    """One point-in-time read of plant/device telemetry.

    Wraps the raw structure returned by the portal:
    ``{plant_id: {"plantData": {...}, "devices": {sn: {"deviceData": {...},
    "historyLast": {...}}}, "weather": {...}}}``. Accessors raise
    MissingDataError when the piece they need is absent.
    """
    raw: dict = field(default_factory=dict)
    target_date: date = None

    @property
    def plant(self):
        if not self.raw:
            raise MissingDataError("no plant in snapshot")
        return self.raw[next(iter(self.raw))]

    @property
    def device(self):
        devices = self.plant.get("devices") or {}
        if not devices:
            raise MissingDataError("no device in snapshot")
        return devices[next(iter(devices))]

    def _device_field(self, section, key):
        value = (self.device.get(section) or {}).get(key)
        if value is None or value == "":
            raise MissingDataError(f"{section}.{key} missing")
        return value

    @property
    def pac(self) -> float:
        """Instantaneous output power in W."""
        return float(self._device_field("historyLast", "pac"))

    @property
    def vacr(self) -> float:
        return float(self._device_field("historyLast", "vacr"))

    @property
    def temperature(self) -> float:
        return float(self._device_field("historyLast", "temperature"))

    @property
    def e_today(self) -> float:
        """Today's energy as reported by the device summary, in kWh."""
        return float(self._device_field("deviceData", "eToday"))

    @property
    def last_update(self) -> datetime:
        value = parse_timestamp(self._device_field("deviceData", "lastUpdateTime"))
        if value is None:
            raise MissingDataError("deviceData.lastUpdateTime unparsable")
        return value

    @property
    def e_total(self) -> float:
        """Plant lifetime energy in kWh."""
        value = (self.plant.get("plantData") or {}).get("eTotal")
        if value is None or value == "":
            raise MissingDataError("plantData.eTotal missing")
        return float(value)

    def day_energy(self) -> float:
        """Energy produced on the snapshot's target date, 0 when unknown."""
        try:
            history = self.device.get("historyLast")
        except MissingDataError:
            return 0.0
        if not history:
            return 0.0
        try:
            return float(history.get("eacToday") or 0)
        except (TypeError, ValueError):
            return 0.0

    @property
    def weather_now(self) -> dict:
        """Current weather block (``HeWeather6[0].now``)."""
        try:
            return self.plant["weather"]["data"]["HeWeather6"][0]["now"]
        except (KeyError, IndexError, TypeError):
            raise MissingDataError("weather data missing")


class GrowattClient:
    """Minimal client for the Growatt web portal (server.growatt.com).

    One instance per login session: ``login()``, ``fetch_snapshot()``,
    ``logout()``. Any HTTP or authentication failure raises
    ConnectivityError.
    """

    def __init__(self, username, password, server_url=DEFAULT_SERVER_URL,
                 timeout=REQUEST_TIMEOUT):
        self.username = username
        self.password = password
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.session = None

    def _post(self, path, data=None, params=None):
        try:
            resp = self.session.post(
                f"{self.server_url}{path}",
                data=data or {},
                params=params,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ConnectivityError(f"POST {path} failed: {e}") from e
        if not resp.ok:
            raise ConnectivityError(f"POST {path} returned {resp.status_code}")
        try:
            return resp.json()
        except ValueError as e:
            # The portal answers with an HTML login page once the session expires
            raise ConnectivityError(f"POST {path} returned non-JSON body") from e

    def login(self):
        """Open a portal session."""
        self.session = requests.Session()
        body = self._post("/login", data={
            "account": self.username,
            "password": "",
            "validateCode": "",
            "isReadPact": 0,
            "passwordCrc": hash_password(self.password),
        })
        if str(body.get("result")) != "1":
            self.session = None
            raise ConnectivityError(f"Growatt login rejected: {body.get('msg', body.get('result'))}")
        logger.debug("Logged in to %s as %s", self.server_url, self.username)

    def logout(self):
        """Close the portal session. Failures are logged only."""
        if self.session is None:
            return
        try:
            self.session.get(f"{self.server_url}/logout", timeout=self.timeout)
        except requests.RequestException:
            logger.warning("Growatt logout failed", exc_info=True)
        finally:
            self.session.close()
            self.session = None

    def _plant_list(self):
        body = self._post("/index/getPlantListTitle")
        if isinstance(body, dict):
            body = body.get("obj") or body.get("datas") or []
        return body or []

    def _inverter_history(self, serial, day):
        body = self._post("/device/getInverterHistory", data={
            "inverterSn": serial,
            "startDate": day.strftime("%Y-%m-%d"),
            "endDate": day.strftime("%Y-%m-%d"),
            "start": 0,
        })
        datas = ((body.get("obj") or {}).get("datas")) or []
        return datas[0] if datas else {}

    def fetch_snapshot(self, day=None) -> Snapshot:
        """Fetch plant, device, history and weather data for ``day``."""
        if self.session is None:
            raise ConnectivityError("not logged in")
        day = day or date.today()

        raw = {}
        for plant in self._plant_list():
            plant_id = plant.get("id")
            if plant_id is None:
                continue
            plant_data = self._post("/panel/getPlantData", params={"plantId": plant_id})
            devices_body = self._post("/panel/getDevicesByPlantList", data={
                "currPage": 1,
                "plantId": plant_id,
            })
            devices = {}
            for dev in ((devices_body.get("obj") or {}).get("datas")) or []:
                serial = dev.get("sn")
                if not serial:
                    continue
                devices[serial] = {
                    "deviceData": dev,
                    "historyLast": self._inverter_history(serial, day),
                }
            weather = self._post("/index/getWeatherByPlantId", params={"plantId": plant_id})
            raw[str(plant_id)] = {
                "plantName": plant.get("plantName"),
                "plantData": plant_data.get("obj") or {},
                "devices": devices,
                "weather": weather.get("obj") or {},
            }
        return Snapshot(raw=raw, target_date=day)
