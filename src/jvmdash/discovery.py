"""Local JVM discovery for fleet registration."""

import re
import socket
from dataclasses import dataclass

import psutil

from jvmdash.models import ProcessRegistration

_APP_NAME_PROPERTY = re.compile(r"^-D(?:app\.name|spring\.application\.name)=(.+)$")
_VERSION_IN_PATH = re.compile(r"(?:jdk|jre|java)[-_]?(\d+(?:\.\d+)*(?:[._+]\w+)?)", re.IGNORECASE)


@dataclass(slots=True, frozen=True)
class JvmProcess:
    """A Java process found on this host."""

    pid: int
    name: str
    command_line: tuple[str, ...]
    executable: str
    create_time: float  # seconds since the epoch

    @property
    def app_name(self) -> str:
        """Best-effort application name from the command line."""
        return guess_app_name(self.command_line) or f"java-{self.pid}"


def is_java(name: str, cmdline: list[str]) -> bool:
    """Check whether a process looks like a JVM."""
    if name.lower() in ("java", "java.exe", "javaw", "javaw.exe"):
        return True
    if cmdline:
        head = cmdline[0].replace("\\", "/").rsplit("/", 1)[-1].lower()
        return head in ("java", "java.exe", "javaw", "javaw.exe")
    return False


def guess_app_name(cmdline: tuple[str, ...] | list[str]) -> str | None:
    """
    Derive an application name from a java command line.

    Prefers an explicit -Dapp.name / -Dspring.application.name property,
    then the jar passed with -jar, then the main class.
    """
    args = list(cmdline[1:])
    for arg in args:
        match = _APP_NAME_PROPERTY.match(arg)
        if match:
            return match.group(1)

    skip_next = False
    for index, arg in enumerate(args):
        if skip_next:
            skip_next = False
            continue
        if arg == "-jar" and index + 1 < len(args):
            jar = args[index + 1].replace("\\", "/").rsplit("/", 1)[-1]
            return jar[:-4] if jar.endswith(".jar") else jar
        if arg in ("-cp", "-classpath", "--class-path", "-p", "--module-path"):
            skip_next = True
            continue
        if arg.startswith("-"):
            continue
        return arg.rsplit(".", 1)[-1]
    return None


def guess_jvm_version(executable: str) -> str | None:
    """Pull a version out of the java executable's install path, if it has one."""
    match = _VERSION_IN_PATH.search(executable or "")
    return match.group(1) if match else None


def discover_jvms() -> list[JvmProcess]:
    """
    List Java processes on this host.

    Processes that exit mid-scan or deny access are skipped.
    """
    found: list[JvmProcess] = []
    attrs = ["pid", "name", "cmdline", "exe", "create_time"]

    for proc in psutil.process_iter(attrs=attrs):
        try:
            with proc.oneshot():
                info = proc.info
                cmdline = info.get("cmdline") or []
                name = info.get("name") or ""
                if not is_java(name, cmdline):
                    continue
                found.append(
                    JvmProcess(
                        pid=info.get("pid", 0),
                        name=name,
                        command_line=tuple(cmdline),
                        executable=info.get("exe") or (cmdline[0] if cmdline else ""),
                        create_time=info.get("create_time") or 0.0,
                    )
                )
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue

    return sorted(found, key=lambda jvm: jvm.pid)


def inspect_jvm(pid: int) -> JvmProcess:
    """
    Describe a single Java process.

    Raises:
        psutil.NoSuchProcess: no process with that pid.
        ValueError: the process is not a JVM.
    """
    proc = psutil.Process(pid)
    with proc.oneshot():
        cmdline = proc.cmdline()
        name = proc.name()
        try:
            exe = proc.exe()
        except psutil.AccessDenied:
            exe = cmdline[0] if cmdline else ""
        create_time = proc.create_time()
    if not is_java(name, cmdline):
        raise ValueError(f"process {pid} ({name}) is not a JVM")
    return JvmProcess(pid, name, tuple(cmdline), exe, create_time)


def registration_for(
    jvm: JvmProcess,
    host: str | None = None,
    port: int | None = None,
    app_name: str | None = None,
) -> ProcessRegistration:
    """Build the registration payload for a discovered JVM."""
    return ProcessRegistration(
        app_name=app_name or jvm.app_name,
        host=host or socket.gethostname(),
        port=port,
        jvm_name=jvm.name,
        jvm_version=guess_jvm_version(jvm.executable),
        start_time=int(jvm.create_time * 1000) if jvm.create_time else None,
    )
