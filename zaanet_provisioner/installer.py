"""Install and uninstall pipelines.

Install is one linear pass:

    environment -> fetch -> package -> identity -> credentials -> admin device
    -> config file -> deploy -> inject -> jobs -> gateway -> wireless
    -> services -> verify

Environment, fetch, package, config-file and entry-point failures stop the
run. Everything later is absorbed and reported as a warning.
"""

import asyncio
import logging
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional

import aiosqlite
from rich.console import Console

from . import __version__
from .assets import AssetProvisioner, DeploymentResult
from .backup import TIMESTAMP_FORMAT, BackupRecord, find_backups
from .config import Config
from .credentials import ProvisioningConfig, load_router_id, save_provisioning_config
from .errors import ConfigStoreError, EnvironmentCheckError, JobError, ProvisioningError
from .gateway import (
    TRUSTED_MAC_LIST,
    admin_whitelist_batch,
    default_gateway_config,
    firewall_batch,
    gateway_parameters_batch,
    resolve_api_ip,
    wireless_batch,
    wireless_reset_batch,
)
from .history import HistoryDatabase, RunKind, RunRecord, RunStatus
from .identity import (
    ROUTER_ID_PATTERN,
    AdminDevice,
    LookupContext,
    normalize_mac,
    resolve_admin_device,
    resolve_router_identity,
)
from .injector import TemplateInjector, injectable_files, placeholder_values
from .jobs import NETWORK_INFO_FILE, refresh_network_info
from .prompts import PromptCancelled, Prompter, collect_credentials
from .scheduler import JobScheduler, ScheduledJob, write_job_script
from .services import (
    PackageManager,
    ServiceController,
    check_connectivity,
    check_free_space,
    check_root,
    reload_wifi,
)
from .store import ConfigStore, UciStore
from .transaction import CommitResult, ConfigTransaction, Target
from .verifier import DeploymentVerifier, InstallLog, VerificationReport, deployed_file_sizes, run_stamp

logger = logging.getLogger(__name__)


def default_stores(settings: Config) -> Dict[Target, ConfigStore]:
    return {
        Target.GATEWAY: UciStore(settings.gateway.package, settings.paths.uci_dir),
        Target.NETWORK: UciStore(settings.wireless.package, settings.paths.uci_dir),
    }


@dataclass
class RunOutcome:
    """Result of an install or uninstall run."""
    success: bool = False
    exit_code: int = 0
    phase: Optional[str] = None
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    backups: List[Path] = field(default_factory=list)
    router_id: Optional[str] = None
    verification: Optional[VerificationReport] = None
    log_path: Optional[Path] = None

    @property
    def status(self) -> RunStatus:
        if not self.success:
            return RunStatus.FAILED
        return RunStatus.COMPLETED_WITH_WARNINGS if self.warnings else RunStatus.COMPLETED


class _Pipeline:
    """Shared plumbing: phase headers, warnings, history records."""

    kind = RunKind.INSTALL

    def __init__(
        self,
        settings: Config,
        prompter: Optional[Prompter] = None,
        stores: Optional[Dict[Target, ConfigStore]] = None,
        packages: Optional[PackageManager] = None,
        service: Optional[ServiceController] = None,
        history: Optional[HistoryDatabase] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.settings = settings
        self.prompter = prompter or Prompter()
        self.console: Console = self.prompter.console
        self.stores = stores or default_stores(settings)
        self.transaction = ConfigTransaction(self.stores, clock=clock)
        self.packages = packages or PackageManager()
        self.service = service or ServiceController(settings.gateway.service, settings.paths.init_dir)
        self.scheduler = JobScheduler(settings.paths.crontab, settings.paths.init_dir, settings.jobs.cron_service)
        self.history = history
        self.clock = clock
        self.outcome = RunOutcome()

    def _phase(self, name: str, title: str) -> None:
        self.outcome.phase = name
        self.console.print()
        self.console.rule(f"[bold blue]{title}[/bold blue]")

    def _warn(self, phase: str, message: str) -> None:
        logger.warning(message)
        self.outcome.warnings.append(f"{phase}: {message}")

    def _absorb(self, result: CommitResult) -> None:
        """Fold a phase result into the run's warnings and backups."""
        for backup in result.backups:
            if backup.path not in self.outcome.backups:
                self.outcome.backups.append(backup.path)
        self.outcome.warnings.extend(result.warnings)
        if not result.success:
            where = ", ".join(str(b.path) for b in result.backups) or "none"
            state = "rolled back" if result.rolled_back else "not rolled back"
            self._warn(result.phase, f"{result.error} ({state}; backups: {where})")

    async def _record_start(self) -> Optional[int]:
        if self.history is None:
            return None
        try:
            return await self.history.create_run(
                RunRecord(kind=self.kind, status=RunStatus.STARTED, started_at=self.clock())
            )
        except (aiosqlite.Error, OSError) as e:
            logger.warning(f"Failed to record run history: {e}")
            return None

    async def _record_end(self, run_id: Optional[int], status: RunStatus) -> None:
        if self.history is None or run_id is None:
            return
        try:
            await self.history.update_run(
                run_id,
                status=status,
                router_id=self.outcome.router_id,
                phase=self.outcome.phase,
                error_message=self.outcome.error,
                warnings=self.outcome.warnings,
                backups=[str(p) for p in self.outcome.backups],
                completed_at=self.clock(),
            )
        except (aiosqlite.Error, OSError) as e:
            logger.warning(f"Failed to record run history: {e}")

    async def run(self) -> RunOutcome:
        run_id = await self._record_start()
        status = RunStatus.FAILED
        try:
            await self._run()
            self.outcome.success = True
            status = self.outcome.status
        except PromptCancelled as e:
            self.outcome.error = str(e)
            self.outcome.exit_code = 1
            status = RunStatus.CANCELLED
            self.console.print(f"[yellow]{e}[/yellow]")
        except ProvisioningError as e:
            self.outcome.error = str(e)
            self.outcome.exit_code = 1
            logger.error(f"[{self.outcome.phase}] {e}")
        finally:
            self._save_log()
            await self._record_end(run_id, status)
        return self.outcome

    async def _run(self) -> None:
        raise NotImplementedError

    def _save_log(self) -> None:
        try:
            self.outcome.log_path = self._build_log().write(self._log_path())
        except OSError as e:
            logger.warning(f"Failed to write log: {e}")

    def _build_log(self) -> InstallLog:
        raise NotImplementedError

    def _log_path(self) -> Path:
        raise NotImplementedError


class Installer(_Pipeline):
    """Provisions the router into a captive-portal gateway."""

    def __init__(
        self,
        settings: Config,
        prompter: Optional[Prompter] = None,
        stores: Optional[Dict[Target, ConfigStore]] = None,
        packages: Optional[PackageManager] = None,
        service: Optional[ServiceController] = None,
        assets: Optional[AssetProvisioner] = None,
        verifier: Optional[DeploymentVerifier] = None,
        history: Optional[HistoryDatabase] = None,
        settings_file: Optional[str] = None,
        env_file: Optional[str] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        super().__init__(settings, prompter, stores, packages, service, history, clock)
        paths, remote = settings.paths, settings.remote
        self.assets = assets or AssetProvisioner(
            remote.base_url,
            remote.manifest,
            remote.required_files,
            Path(paths.staging_dir),
            timeout=remote.download_timeout,
        )
        self.verifier = verifier or DeploymentVerifier(
            Path(paths.web_root),
            remote.required_files,
            paths.credentials_file,
            settings.gateway.port,
            entry_point=remote.entry_point,
        )
        self.injector = TemplateInjector()
        self.settings_file = settings_file
        self.env_file = env_file
        self.provisioning: Optional[ProvisioningConfig] = None
        self.admin: Optional[AdminDevice] = None
        self.deployment: Optional[DeploymentResult] = None
        self.free_kb: Optional[int] = None
        self.gateway_running = False

    async def _run(self) -> None:
        self._phase("environment", "Step 1: Checking Environment")
        await self.check_environment()

        self._phase("fetch", "Step 2: Downloading Project Files")
        staged = await self.assets.fetch()
        logger.info(f"All {len(staged.files)} files downloaded and validated")

        self._phase("package", "Step 3: Installing Gateway Package")
        await self.ensure_gateway_package()

        self._phase("identity", "Step 4: Generating Router Identifier")
        router_id = self.resolve_router_id()

        self._phase("credentials", "Step 5: Configuration Information")
        self.prompter.pause()
        self.provisioning = collect_credentials(
            self.prompter,
            router_id,
            self.settings.remote.main_server,
            default_ssid=self.settings.wireless.default_ssid,
            secret_min_length=self.settings.limits.secret_min_length,
        )

        self._phase("admin_device", "Step 6: Admin Device Whitelisting")
        self.admin = await self.detect_admin_device()

        self._phase("config_file", "Step 7: Creating Configuration File")
        self.persist_config()

        self._phase("deploy", "Step 8: Deploying Project Files")
        self.deployment = await self.assets.deploy(
            staged,
            Path(self.settings.paths.web_root),
            self.settings.remote.entry_point,
            self.settings.remote.critical_files,
            now=self.clock(),
        )
        if self.deployment.backup:
            self.outcome.backups.append(self.deployment.backup.path)
        for warning in self.deployment.warnings:
            self._warn("deploy", warning)

        self._phase("inject", "Step 9: Injecting Configuration")
        self.inject()

        self._phase("jobs", "Step 10: Background Jobs")
        await self.install_jobs()

        self._phase("gateway", "Step 11: Configuring Gateway")
        await self.configure_gateway()

        self._phase("wireless", "Step 12: Configuring WiFi Network")
        await self.configure_wireless()

        self._phase("services", "Step 13: Starting Services")
        await self.start_services()

        self._phase("verify", "Step 14: Verifying Installation")
        await self.verify()

    async def check_environment(self) -> None:
        paths, remote = self.settings.paths, self.settings.remote
        check_root()
        await check_connectivity(remote.connectivity_host)
        logger.info("Internet connection verified")
        self.free_kb = check_free_space(paths.overlay, self.settings.limits.min_free_mb)
        logger.info(f"Sufficient space available: {self.free_kb // 1024}MB")

    async def ensure_gateway_package(self) -> None:
        package = self.settings.gateway.package
        if not await self.packages.update():
            self._warn("package", "Failed to update package lists (continuing anyway)")

        if await self.packages.is_installed(package):
            version = await self.packages.version(package)
            logger.info(f"{package} already installed (version: {version})")
            return

        logger.info(f"Installing {package}...")
        if not await self.packages.install(package):
            raise EnvironmentCheckError(f"Failed to install {package}")
        logger.info(f"{package} installed successfully")

    def resolve_router_id(self) -> str:
        """Reuse the persisted id; derive one only on first install."""
        existing = load_router_id(self.settings.paths.credentials_file)
        if existing and ROUTER_ID_PATTERN.match(existing):
            logger.info(f"Reusing router ID: {existing}")
            router_id = existing
        else:
            identity = resolve_router_identity(Path(self.settings.paths.net_class_dir))
            logger.info(f"Generated Router ID: {identity.id} (from {identity.source_kind})")
            router_id = identity.id
        self.outcome.router_id = router_id
        return router_id

    async def detect_admin_device(self) -> Optional[AdminDevice]:
        paths = self.settings.paths
        device = await resolve_admin_device(
            context_factory=lambda ip: LookupContext(ip, paths.arp_table, paths.dhcp_leases),
        )

        if device and device.mac:
            logger.info(f"Detected admin device MAC: {device.mac}")
            return device

        if device:
            self._warn("admin_device", f"Could not auto-detect MAC address for {device.ip}")
        else:
            self._warn("admin_device", "Could not detect your connection IP")

        mac = self.prompter.ask_mac()
        if mac:
            return AdminDevice(ip=device.ip if device else None, mac=mac)
        return device

    def persist_config(self) -> None:
        """Must-succeed: background jobs and re-runs depend on this file."""
        try:
            save_provisioning_config(self.provisioning, self.settings.paths.credentials_file)
        except OSError as e:
            raise ProvisioningError(f"Failed to write configuration file: {e}") from e

    def inject(self) -> None:
        web_root = Path(self.settings.paths.web_root)
        report = self.injector.inject(
            injectable_files(web_root),
            placeholder_values(self.provisioning),
            entry_point=web_root / self.settings.remote.entry_point,
        )
        for warning in report.warnings:
            self._warn("inject", warning)
        logger.info("Configuration injected successfully")

    async def install_jobs(self) -> None:
        jobs = self.settings.jobs
        scheduled = False

        if self.prompter.confirm("Fetch & cache network info now (and keep it refreshed)?", default=True):
            if not await refresh_network_info(self.provisioning, self.settings):
                self._warn("jobs", "Failed to cache network info (continuing without it)")
            scheduled |= self._schedule("network-info", jobs.network_info_script, jobs.network_info_schedule)
        else:
            self._warn("jobs", f"Skipped {NETWORK_INFO_FILE} caching")

        if self.prompter.confirm("Enable metrics collection?", default=True):
            scheduled |= self._schedule("metrics", jobs.metrics_script, jobs.metrics_schedule)
        else:
            logger.warning("Skipped metrics collection")

        if scheduled:
            await self.scheduler.reload()

    def _schedule(self, job_name: str, script: str, schedule: str) -> bool:
        path = Path(self.settings.paths.config_dir) / script
        try:
            write_job_script(path, job_name, self.settings_file, self.env_file)
            self.scheduler.install_or_update(ScheduledJob(script_path=str(path), schedule=schedule))
        except (OSError, JobError) as e:
            self._warn("jobs", f"Failed to install {job_name} job: {e}")
            return False
        return True

    async def configure_gateway(self) -> None:
        gateway, paths = self.settings.gateway, self.settings.paths

        await self.service.stop()
        await self.reset_gateway_config()

        api_ip = await resolve_api_ip(self.provisioning.main_server)
        if api_ip:
            logger.info(f"Resolved API host to IP: {api_ip}")
        else:
            self._warn("firewall", "Failed to resolve API host, skipping pre-auth IP rule")

        batches = [gateway_parameters_batch(gateway, paths.web_root, self.settings.remote.entry_point)]
        if self.admin and self.admin.mac:
            batches.append(admin_whitelist_batch(gateway, [self.admin.mac]))
        else:
            self._warn("admin_whitelist", "No admin device MAC provided - you may lose WiFi access temporarily")
        batches.append(firewall_batch(gateway, api_ip))

        for batch in batches:
            result = await self.transaction.apply(batch)
            self._absorb(result)
            if batch.phase == "admin_whitelist":
                self.admin.whitelisted = result.success
                if result.success:
                    logger.info(f"Admin device whitelisted: {self.admin.mac}")

    async def reset_gateway_config(self) -> None:
        """Start from the package's pristine config, keeping the old one as a backup."""
        package = self.settings.gateway.package
        path = self.stores[Target.GATEWAY].path
        backup = BackupRecord.create(path, self.clock())
        if backup:
            self.outcome.backups.append(backup.path)
            path.unlink()

        if await self.packages.install(package, force_reinstall=True):
            logger.info(f"{package} config reset and package reinstalled")
            return

        self._warn("gateway", f"Failed to reinstall {package}, continuing with existing installation")
        if backup and not path.exists():
            backup.restore()

    async def configure_wireless(self) -> None:
        wireless = self.settings.wireless
        self.console.print("[yellow]WiFi will be temporarily disconnected during reload![/yellow]")
        self.console.print("[yellow]Make sure you are connected via SSH (Ethernet/USB) before continuing![/yellow]")

        if not self.prompter.confirm("Continue with WiFi configuration?"):
            self._warn("wireless", "Skipped WiFi configuration; configure an open WiFi network manually")
            return

        result = await self.transaction.apply(wireless_batch(wireless, self.provisioning.wifi_ssid))
        self._absorb(result)

        reload = await reload_wifi(timeout=wireless.reload_timeout, settle=wireless.settle)
        if reload.warning:
            self._warn("wireless", reload.warning)
        logger.info(f"New SSID: {self.provisioning.wifi_ssid} (open network)")

    async def start_services(self) -> None:
        name = self.settings.gateway.service
        if not await self.service.enable():
            self._warn("services", f"Failed to enable {name} on boot")

        if not await self.service.restart():
            self._warn("services", f"{name} may need a manual restart: {self.service.script} restart")
            return

        await asyncio.sleep(self.settings.gateway.restart_settle)
        self.gateway_running = await self.service.is_running()
        if self.gateway_running:
            logger.info(f"{name} is running")
        else:
            self._warn("services", f"{name} may not be running properly")

    async def verify(self) -> None:
        report = await self.verifier.verify()
        self.outcome.verification = report
        for failure in report.failures:
            self._warn("verify", failure)
        if report.passed:
            logger.info("All critical files verified successfully")

    def _log_path(self) -> Path:
        return self.settings.paths.install_log

    def _build_log(self) -> InstallLog:
        remote, cfg = self.settings.remote, self.provisioning
        log = InstallLog("ZaaNet Installation Log")
        log.section("Installation", {
            "Installation Date": run_stamp(self.clock()),
            "Engine Version": __version__,
            "Result": "failed" if self.outcome.error else "completed",
            "Phase Reached": self.outcome.phase,
            "Error": self.outcome.error or "None",
        })
        log.section("Remote Source", {
            "Repository": remote.repository,
            "Branch": remote.branch,
            "Base URL": remote.base_url,
        })
        log.section("Configuration", {
            "Router ID": self.outcome.router_id or "Unknown",
            "Contract ID": cfg.contract_id if cfg else "Not configured",
            "Main Server": cfg.main_server if cfg else remote.main_server,
            "WiFi SSID": cfg.wifi_ssid if cfg else "Not configured",
            "Secret Key": "hidden",
            "Admin MAC": (self.admin.mac if self.admin and self.admin.mac else "Not configured"),
        })
        log.section("System Information", {
            "Available Space": f"{self.free_kb // 1024}MB" if self.free_kb is not None else "Unknown",
        })
        log.section("Deployed Files", deployed_file_sizes(Path(self.settings.paths.web_root)))
        log.section("Backup Locations", [str(p) for p in self.outcome.backups])
        log.section("Warnings", self.outcome.warnings)
        if self.outcome.verification:
            log.section("Verification", {
                name: "ok" if ok else "FAILED" for name, ok in self.outcome.verification.checks.items()
            })
        log.section("Status", {
            "Gateway service": "running" if self.gateway_running else "stopped or error",
        })
        return log


class Uninstaller(_Pipeline):
    """Tears the captive portal down and restores the router's prior state."""

    kind = RunKind.UNINSTALL

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.removed: List[str] = []
        self.reset_wifi = False
        self.remove_package = False

    def _stamp(self) -> str:
        return self.clock().strftime(TIMESTAMP_FORMAT)

    async def _run(self) -> None:
        self.console.print("[yellow]This will remove ALL ZaaNet configuration![/yellow]")
        if not self.prompter.confirm_word("Are you sure you want to continue?"):
            raise PromptCancelled("Uninstallation cancelled")
        self.remove_package = self.prompter.confirm("Do you also want to remove the gateway package?")
        self.outcome.router_id = load_router_id(self.settings.paths.credentials_file)

        self._phase("services", "Step 1: Stopping Services")
        if await self.service.is_running():
            await self.service.stop()
        await self.service.disable()

        self._phase("config_dir", "Step 2: Removing Configuration and Scripts")
        self.remove_config_dir()

        self._phase("jobs", "Step 3: Removing Background Jobs")
        self.remove_jobs()

        self._phase("portal", "Step 4: Removing Splash Pages and Assets")
        self.remove_portal_files()

        self._phase("gateway", "Step 5: Resetting Gateway Configuration")
        await self.reset_gateway()

        self._phase("wireless", "Step 6: Resetting WiFi Configuration")
        if self.prompter.confirm("Reset WiFi settings?"):
            self.reset_wifi = True
            await self.reset_wireless()
        else:
            logger.info("Skipped WiFi reset")

        self._phase("cleanup", "Step 7: Cleaning Up")
        staging = Path(self.settings.paths.staging_dir)
        if staging.exists():
            shutil.rmtree(staging, ignore_errors=True)
        logger.info("Removed temporary files")

        if self.remove_package:
            self._phase("package", "Step 8: Removing Gateway Package")
            package = self.settings.gateway.package
            if await self.packages.is_installed(package):
                if await self.packages.remove(package):
                    self.removed.append(f"{package} package")
                else:
                    self._warn("package", f"Failed to remove {package}")

        self._phase("network", "Step 9: Restarting Network Services")
        init_dir = self.settings.paths.init_dir
        for name in ("network", "firewall"):
            if not await ServiceController(name, init_dir).restart():
                self._warn("network", f"Failed to restart {name}")

    def remove_config_dir(self) -> None:
        paths = self.settings.paths
        config_dir = Path(paths.config_dir)
        if not config_dir.exists():
            logger.info("Configuration directory not found")
            return

        credentials = paths.credentials_file
        if credentials.exists():
            dest = Path(paths.tmp_dir) / f"zaanet-config-backup-{self._stamp()}.txt"
            shutil.copy2(credentials, dest)
            self.outcome.backups.append(dest)
            logger.info(f"Backed up config to {dest}")

        shutil.rmtree(config_dir)
        self.removed.append(f"Configuration directory: {config_dir}")

    def remove_jobs(self) -> None:
        config_dir = Path(self.settings.paths.config_dir)
        jobs = self.settings.jobs
        try:
            for script in (jobs.network_info_script, jobs.metrics_script):
                self.scheduler.remove(str(config_dir / script))
        except JobError as e:
            self._warn("jobs", str(e))
            return
        self.removed.append("Background job cron entries")

    def remove_portal_files(self) -> None:
        web_root = Path(self.settings.paths.web_root)
        for name in list(self.settings.remote.manifest) + [NETWORK_INFO_FILE]:
            path = web_root / name
            if path.is_file():
                path.unlink()
                logger.info(f"Removed: {name}")
        for dirname in ("assets", "images"):
            path = web_root / dirname
            if path.is_dir():
                shutil.rmtree(path)
                logger.info(f"Removed: {dirname} directory")
        self.removed.append("Splash pages and assets")

        entry = self.settings.remote.entry_point
        backups = find_backups(web_root)
        original = next((b / entry for b in backups if (b / entry).is_file()), None)
        if original is not None:
            web_root.mkdir(parents=True, exist_ok=True)
            shutil.copy2(original, web_root / entry)
            logger.info(f"Restored original splash page from backup: {original.parent}")
        else:
            logger.warning("No original splash page backup found")

        for backup in backups:
            if backup.is_dir():
                shutil.rmtree(backup)
            else:
                backup.unlink()
        if backups:
            logger.info(f"Cleaned up {len(backups)} web root backup(s)")

    async def reset_gateway(self) -> None:
        gateway = self.settings.gateway
        store = self.stores[Target.GATEWAY]
        path = store.path

        if path.exists():
            dest = Path(self.settings.paths.tmp_dir) / f"{gateway.package}-config-backup-{self._stamp()}.txt"
            shutil.copy2(path, dest)
            self.outcome.backups.append(dest)

        originals = find_backups(path)
        if originals:
            BackupRecord(artifact=path, path=originals[0], created_at=self.clock()).restore()
            logger.info(f"Restored original {gateway.package} configuration from {originals[0]}")
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(default_gateway_config(gateway))
            logger.info(f"Created minimal {gateway.package} configuration (disabled)")

        try:
            await store.commit()
        except ConfigStoreError as e:
            self._warn("gateway", str(e))
        self.removed.append(f"{gateway.package} configuration reset")

    async def reset_wireless(self) -> None:
        wireless = self.settings.wireless
        store = self.stores[Target.NETWORK]
        originals = find_backups(store.path)

        if originals:
            BackupRecord(artifact=store.path, path=originals[0], created_at=self.clock()).restore()
            logger.info(f"Restored original WiFi configuration from {originals[0]}")
            try:
                await store.commit()
            except ConfigStoreError as e:
                self._warn("wireless", str(e))
        else:
            result = await self.transaction.apply(wireless_reset_batch(wireless))
            self._absorb(result)
            if result.success:
                logger.warning(f"Reset WiFi to default settings; default password: {wireless.reset_key}")

        reload = await reload_wifi(timeout=wireless.reload_timeout, settle=wireless.settle)
        if reload.warning:
            self._warn("wireless", reload.warning)

    def _log_path(self) -> Path:
        return Path(self.settings.paths.tmp_dir) / f"zaanet-uninstall-{self._stamp()}.log"

    def _build_log(self) -> InstallLog:
        log = InstallLog("ZaaNet Uninstallation Log")
        log.section("Uninstallation", {
            "Uninstallation Date": run_stamp(self.clock()),
            "Engine Version": __version__,
            "Router ID": self.outcome.router_id or "Unknown",
            "Result": "failed" if self.outcome.error else "completed",
            "Error": self.outcome.error or "None",
        })
        log.section("Removed Items", self.removed)
        log.section("Options", {
            "WiFi configuration reset": "Yes" if self.reset_wifi else "No",
            "Gateway package removed": "Yes" if self.remove_package else "No",
        })
        log.section("Backups Created", [str(p) for p in self.outcome.backups])
        log.section("Warnings", self.outcome.warnings)
        return log


async def add_trusted_mac(
    settings: Config,
    mac: str,
    store: Optional[ConfigStore] = None,
    service: Optional[ServiceController] = None,
    clock: Callable[[], datetime] = datetime.now,
) -> Optional[CommitResult]:
    """Whitelist one device. Returns None if it was already trusted.

    Raises:
        ValueError: the MAC address is malformed.
    """
    normalized = normalize_mac(mac)
    if normalized is None:
        raise ValueError(f"Invalid MAC address format: {mac}")

    gateway = settings.gateway
    store = store or UciStore(gateway.package, settings.paths.uci_dir)
    trusted = [m.lower() for m in await store.get_list(gateway.section, TRUSTED_MAC_LIST)]
    if normalized in trusted:
        logger.info(f"MAC {normalized} is already whitelisted")
        return None

    transaction = ConfigTransaction({Target.GATEWAY: store}, clock=clock)
    result = await transaction.apply(admin_whitelist_batch(gateway, [normalized]))
    if result.success:
        service = service or ServiceController(gateway.service, settings.paths.init_dir)
        await service.restart()
        logger.info(f"Whitelisted {normalized}")
    return result
