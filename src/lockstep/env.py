"""Typed access to the environment variables read by lockstep."""

from __future__ import annotations

import os

ENV_LOCKSTEP_APP_FILE = "LOCKSTEP_APP_FILE"
ENV_LOCKSTEP_APP_DIR = "LOCKSTEP_APP_DIR"
ENV_LOCKSTEP_OUT_DIR = "LOCKSTEP_OUT_DIR"
ENV_LOCKSTEP_VALIDATORS = "LOCKSTEP_VALIDATORS"


class LockstepEnv:
	"""Reads and writes lockstep settings through os.environ.

	Values are never cached so tests can monkeypatch the environment.
	"""

	def _get(self, key: str) -> str | None:
		value = os.environ.get(key)
		return value or None

	def _set(self, key: str, value: str | None) -> None:
		if value is None:
			os.environ.pop(key, None)
		else:
			os.environ[key] = value

	@property
	def app_file(self) -> str | None:
		return self._get(ENV_LOCKSTEP_APP_FILE)

	@app_file.setter
	def app_file(self, value: str | None) -> None:
		self._set(ENV_LOCKSTEP_APP_FILE, value)

	@property
	def app_dir(self) -> str | None:
		return self._get(ENV_LOCKSTEP_APP_DIR)

	@app_dir.setter
	def app_dir(self, value: str | None) -> None:
		self._set(ENV_LOCKSTEP_APP_DIR, value)

	@property
	def out_dir(self) -> str | None:
		return self._get(ENV_LOCKSTEP_OUT_DIR)

	@out_dir.setter
	def out_dir(self, value: str | None) -> None:
		self._set(ENV_LOCKSTEP_OUT_DIR, value)

	@property
	def validators_module(self) -> str | None:
		return self._get(ENV_LOCKSTEP_VALIDATORS)

	@validators_module.setter
	def validators_module(self, value: str | None) -> None:
		self._set(ENV_LOCKSTEP_VALIDATORS, value)


env = LockstepEnv()
