"""Ordered shell rule table.

Rules are checked from the most to the least severe tier and the first match
decides the verdict. Patterns run against the normalized command (lowercase,
quotes removed, program names reduced to their basename) either as a whole
(``scope="command"``) or one simple command at a time (``scope="segment"``).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Literal

from .models import ReasonCategory, RiskLevel

RuleScope = Literal["command", "segment"]

# Targets whose recursive removal is never acceptable.
_ROOT_TARGET = (
    r"(?:/|/\*|/\.|~|~/|~/\*|\$home|\$home/|\$home/\*|"
    r"/(?:bin|boot|dev|etc|home|lib|lib32|lib64|opt|proc|root|sbin|srv|sys|usr|var|"
    r"system|library|applications|users|private|volumes)/?\*?|"
    r"[a-z]:(?:\\|/)?\*?|[a-z]:\\(?:windows|users|programdata|program)\S*|"
    r"\$env:(?:systemroot|windir|userprofile|programfiles)\S*)"
)
_TARGET_END = r"(?:\s|$)"
_ELEVATE = r"(?:sudo|doas|pkexec|gsudo|runas|su\s+-c)"
_INTERPRETER = (
    r"(?:(?:ba|da|z|k|c|tc|fi)?sh|python[\d.]*|perl|ruby|node|php|iex|invoke-expression|"
    r"powershell|pwsh)"
)
_FETCHER = r"(?:curl|wget|fetch|iwr|irm|invoke-webrequest|invoke-restmethod)"
# Stdin-fed interpreter at the head of a pipe stage, optionally elevated or path-qualified.
_STDIN_INTERPRETER = (
    rf"(?:{_ELEVATE}\s+(?:-\S+\s+)*)?(?:(?:\S*/)?(?:env|exec|nohup)\s+(?:-\S+\s+)*)?"
    rf"(?:\S*/)?{_INTERPRETER}"
)
_DECODER = (
    r"(?:^|\s)base64\s+[^|]*(?:-d|--decode)(?:\s|\|)|(?:^|\s)xxd\s+[^|]*-r|"
    r"(?:^|\s)openssl\s+(?:enc|base64)\s[^|]*-d(?:\s|\|)|"
    r"(?:^|\s)(?:printf|echo\s+-e)\s[^|]*(?:x[0-9a-f]{2}|\d{3})"
)
_AUDIT_LOG = r"audit-\d{4}-\d{2}-\d{2}\.log"
_CRITICAL_PROCESS = (
    r"(?:init|systemd|launchd|kernel_task|windowserver|loginwindow|csrss|wininit|winlogon|"
    r"lsass|smss|services)"
)
_SYSTEM_DIR = (
    r"(?:/etc|/usr|/bin|/sbin|/boot|/lib|/lib64|/system|/library|/var/lib|/var/db|"
    r"[a-z]:\\windows|[a-z]:\\program)"
)
_SECRET_LOCATION = (
    r"(?:(?:^|[\s/=:])\.(?:ssh|gnupg|aws|azure|kube|netrc|pgpass|git-credentials|password-store|"
    r"docker/config\.json|config/gcloud|config/companionguard)"
    r"|/etc/(?:shadow|gshadow|sudoers)|/library/keychains)"
)


@dataclass(frozen=True, slots=True)
class ShellRule:
    """One destructive-pattern family entry."""

    rule_id: str
    risk: RiskLevel
    category: ReasonCategory
    description: str
    pattern: re.Pattern[str]
    scope: RuleScope = "segment"
    confirm: bool = False

    def matches(self, command: str, segments: list[str]) -> bool:
        if self.scope == "command":
            return self.pattern.search(command) is not None
        return any(self.pattern.search(segment) for segment in segments)


def _rule(
    rule_id: str,
    risk: RiskLevel,
    category: ReasonCategory,
    description: str,
    *patterns: str,
    scope: RuleScope = "segment",
    confirm: bool = False,
) -> ShellRule:
    combined = "|".join(f"(?:{pattern})" for pattern in patterns)
    return ShellRule(
        rule_id=rule_id,
        risk=risk,
        category=category,
        description=description,
        pattern=re.compile(combined),
        scope=scope,
        confirm=confirm,
    )


BLOCKED = RiskLevel.BLOCKED
DANGEROUS = RiskLevel.DANGEROUS
CAUTION = RiskLevel.CAUTION

SHELL_RULES: tuple[ShellRule, ...] = (
    _rule(
        "B001",
        BLOCKED,
        ReasonCategory.FORK_BOMB,
        "fork bomb",
        r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}",
        r"\b(\w+)\s*\(\)\s*\{\s*\1\s*\|\s*\1\s*&",
        r"%0\s*\|\s*%0",
        scope="command",
    ),
    _rule(
        "B002",
        BLOCKED,
        ReasonCategory.DESTRUCTIVE_DELETE,
        "recursive deletion of the filesystem root, a home directory or a system directory",
        r"(?:^|\s)rm\s(?=(?:.*\s)?(?:-[a-z]*r[a-z]*|--recursive)(?:\s|$))"
        rf"(?=(?:.*\s)?{_ROOT_TARGET}{_TARGET_END})",
        r"(?:^|\s)(?:rd|rmdir|del|erase)\s(?=(?:.*\s)?/s(?:\s|$))"
        rf"(?=(?:.*\s)?{_ROOT_TARGET}{_TARGET_END})",
        r"(?:^|\s)(?:remove-item|ri)\s(?=(?:.*\s)?-r(?:ecurse)?(?:\s|$))"
        rf"(?=(?:.*\s)?{_ROOT_TARGET}{_TARGET_END})",
    ),
    _rule(
        "B003",
        BLOCKED,
        ReasonCategory.DISK_DESTRUCTION,
        "disk formatting, wiping or raw device writes",
        r"(?:^|\s)mkfs(?:\.\w+)?(?:\s|$)",
        r"(?:^|\s)(?:wipefs|blkdiscard|diskpart|format-volume|clear-disk|initialize-disk)(?:\s|$)",
        r"(?:^|\s)dd\s(?=(?:.*\s)?of=/dev/(?:sd|hd|nvme|disk|rdisk|mmcblk|xvd|vd|md|dm-|mapper/))",
        r">\s*/dev/(?:sd|hd|nvme|disk|rdisk|mmcblk|xvd|vd)\S*",
        r"(?:^|\s)shred\s(?=(?:.*\s)?/dev/)",
        r"(?:^|\s)format\s+[a-z]:",
        r"(?:^|\s)diskutil\s+(?:erasedisk|erasevolume|zerodisk|randomdisk|secureerase|"
        r"reformat|partitiondisk)",
        r"(?:^|\s)cipher\s+/w",
    ),
    _rule(
        "B004",
        BLOCKED,
        ReasonCategory.REMOTE_CODE,
        "remote content piped or substituted into an interpreter",
        rf"\b{_FETCHER}\b[^;&\n]*\|\s*(?:{_ELEVATE}\s+(?:-\S+\s+)*)?{_INTERPRETER}(?:\s|$)",
        rf"\b{_INTERPRETER}\s+<\s*\(\s*{_FETCHER}\b",
        rf"\b(?:{_INTERPRETER}\s+-c|eval)\s+\$\(\s*{_FETCHER}\b",
        rf"\biex\s*\(\s*(?:{_FETCHER}|new-object\s+(?:system\.)?net\.webclient)",
        scope="command",
    ),
    _rule(
        "B005",
        BLOCKED,
        ReasonCategory.REMOTE_CODE,
        "reverse shell",
        r"/dev/(?:tcp|udp)/",
        r"\b(?:nc|ncat|netcat)\b[^|;&\n]*\s(?:-[a-z]*e|--exec|--sh-exec)(?:\s|$)",
        r"\bsocat\b.*\bexec:",
        scope="command",
    ),
    _rule(
        "B006",
        BLOCKED,
        ReasonCategory.PROCESS_TERMINATION,
        "termination of init, every process or a critical system process",
        r"(?:^|\s)kill\s+(?:-\S+\s+)*-?1(?:\s|$)",
        r"(?:^|\s)(?:kill|killall|pkill|taskkill|stop-process)\s"
        rf"(?=(?:.*\s)?{_CRITICAL_PROCESS}(?:\.exe)?(?:\s|$))",
    ),
    _rule(
        "B007",
        BLOCKED,
        ReasonCategory.PRIVILEGE_ESCALATION,
        "privilege escalation combined with a destructive command",
        rf"(?:^|\s){_ELEVATE}\s(?:.*\s)?(?:rm\s+(?:.*\s)?-[a-z]*[rf]|dd\s|mkfs|shred\s|"
        r"wipefs|fdisk|parted|truncate\s|(?:chmod|chown|chgrp)\s+(?:.*\s)?-[a-z]*r)",
    ),
    _rule(
        "B008",
        BLOCKED,
        ReasonCategory.PERMISSIONS,
        "recursive permission or ownership change of a root-level path",
        r"(?:^|\s)(?:chmod|chown|chgrp)\s(?=(?:.*\s)?(?:-[a-z]*r[a-z]*|--recursive)(?:\s|$))"
        rf"(?=(?:.*\s)?{_ROOT_TARGET}{_TARGET_END})",
    ),
    _rule(
        "B009",
        BLOCKED,
        ReasonCategory.SYSTEM_CONFIG,
        "overwriting account databases or the machine registry",
        r"(?:>|(?:^|\s)tee\s+(?:-a\s+)?)\s*/etc/(?:passwd|shadow|sudoers|gshadow)(?:\s|$)",
        r"(?:^|\s)(?:mv|cp)\s(?:.*\s)?/etc/(?:passwd|shadow|sudoers|gshadow)$",
        r"(?:^|\s)reg\s+delete\s+hk(?:lm|ey_local_machine)",
        r"(?:^|\s)bcdedit\s+/delete",
    ),
    _rule(
        "B010",
        BLOCKED,
        ReasonCategory.REMOTE_CODE,
        "decoded or escaped payload piped into an interpreter",
        rf"(?:{_DECODER})[^;&\n]*\|\s*{_STDIN_INTERPRETER}(?:\s|$)",
        scope="command",
    ),
    _rule(
        "D101",
        DANGEROUS,
        ReasonCategory.DESTRUCTIVE_DELETE,
        "recursive or forced deletion",
        r"(?:^|\s)rm\s(?=(?:.*\s)?(?:-[a-z]*[rf][a-z]*|--recursive|--force)(?:\s|$))",
        r"(?:^|\s)(?:rd|rmdir)\s(?:.*\s)?/s(?:\s|$)",
        r"(?:^|\s)(?:del|erase)\s(?:.*\s)?/[sq](?:\s|$)",
        r"(?:^|\s)(?:remove-item|ri)\s(?:.*\s)?-(?:r|recurse|force)(?:\s|$)",
        r"(?:^|\s)find\s(?:.*\s)?(?:-delete|-exec\s+rm|-execdir\s+rm)(?:\s|$)",
        r"(?:^|\s)mv\s(?:.*\s)?/dev/null$",
    ),
    _rule(
        "D102",
        DANGEROUS,
        ReasonCategory.DESTRUCTIVE_DELETE,
        "history-destroying version control operation",
        r"(?:^|\s)git\s+clean\s+(?:.*\s)?-[a-z]*f",
        r"(?:^|\s)git\s+reset\s+(?:.*\s)?--hard",
        r"(?:^|\s)git\s+push\s+(?:.*\s)?(?:-f|--force|--force-with-lease|--delete)(?:\s|$)",
    ),
    _rule(
        "D103",
        DANGEROUS,
        ReasonCategory.PRIVILEGE_ESCALATION,
        "privilege escalation",
        rf"(?:^|\s){_ELEVATE}(?:\s|$)",
        r"^su(?:\s|$)",
    ),
    _rule(
        "D104",
        DANGEROUS,
        ReasonCategory.SECRET_ACCESS,
        "access to credentials or secret material",
        _SECRET_LOCATION,
        r"(?:^|\s)security\s+(?:find-generic-password|find-internet-password|dump-keychain)",
    ),
    _rule(
        "D105",
        DANGEROUS,
        ReasonCategory.PROCESS_TERMINATION,
        "process or service termination",
        r"(?:^|\s)(?:kill|killall|pkill|taskkill|stop-process|xkill|stop-service)(?:\s|$)",
        r"(?:^|\s)(?:systemctl|service)\s(?:.*\s)?(?:stop|kill|disable|mask)(?:\s|$)",
        r"(?:^|\s)launchctl\s+(?:unload|remove|bootout|kill|disable)(?:\s|$)",
        r"(?:^|\s)sc\s+(?:stop|delete|config)(?:\s|$)",
    ),
    _rule(
        "D106",
        DANGEROUS,
        ReasonCategory.SYSTEM_POWER,
        "shutdown, reboot or suspend",
        r"(?:^|\s)(?:shutdown|reboot|halt|poweroff|stop-computer|restart-computer)(?:\s|$)",
        r"(?:^|\s)init\s+[06](?:\s|$)",
        r"(?:^|\s)systemctl\s+(?:poweroff|reboot|halt|suspend|hibernate)(?:\s|$)",
    ),
    _rule(
        "D107",
        DANGEROUS,
        ReasonCategory.DISK_DESTRUCTION,
        "partition, volume or swap management",
        r"(?:^|\s)(?:fdisk|sfdisk|gdisk|sgdisk|parted|mkswap|swapoff|lvremove|vgremove|"
        r"pvremove|mdadm)(?:\s|$)",
        r"(?:^|\s)(?:zpool|zfs)\s+destroy(?:\s|$)",
        r"(?:^|\s)diskutil\s+(?:unmount|unmountdisk|eject|apfs)(?:\s|$)",
    ),
    _rule(
        "D108",
        DANGEROUS,
        ReasonCategory.PERMISSIONS,
        "recursive, world-writable or setuid permission change",
        r"(?:^|\s)(?:chmod|chown|chgrp)\s(?:.*\s)?(?:-[a-z]*r[a-z]*|--recursive)(?:\s|$)",
        r"(?:^|\s)chmod\s(?:.*\s)?(?:[0-7]?777|a\+rwx|[ugoa]*\+[rwx]*s[rwx]*)(?:\s|$)",
        r"(?:^|\s)(?:chattr|icacls|takeown|setfacl)(?:\s|$)",
    ),
    _rule(
        "D109",
        DANGEROUS,
        ReasonCategory.SYSTEM_CONFIG,
        "write into a system directory",
        rf"(?:>|(?:^|\s)tee\s+(?:-a\s+)?)\s*{_SYSTEM_DIR}(?:/|\\|\s|$)",
        rf"(?:^|\s)(?:cp|mv|ln|install|rsync)\s(?:.*\s)?{_SYSTEM_DIR}(?:[/\\]\S*)?$",
    ),
    _rule(
        "D110",
        DANGEROUS,
        ReasonCategory.SYSTEM_CONFIG,
        "security control, account, scheduler or registry change",
        r"(?:^|\s)csrutil\s+disable",
        r"(?:^|\s)setenforce\s+0",
        r"(?:^|\s)ufw\s+disable",
        r"(?:^|\s)spctl\s+--master-disable",
        r"(?:^|\s)netsh\s+advfirewall\s+.*\bstate\s+off",
        r"(?:^|\s)set-mppreference\s.*-disable",
        r"(?:^|\s)(?:visudo|passwd|useradd|userdel|usermod|groupdel|dscl|net\s+user)(?:\s|$)",
        r"(?:^|\s)crontab\s+(?:.*\s)?-r(?:\s|$)",
        r"(?:^|\s)history\s+-c(?:\s|$)",
        r"(?:^|\s)(?:reg\s+(?:add|delete|import)|bcdedit|defaults\s+delete)(?:\s|$)",
        r"(?:^|\s)set-itemproperty\s+(?:.*\s)?hklm:",
    ),
    _rule(
        "D111",
        DANGEROUS,
        ReasonCategory.SYSTEM_CONFIG,
        "package removal",
        r"(?:^|\s)(?:apt|apt-get|yum|dnf|zypper|pacman|brew|snap|flatpak|pip\d?|npm|pnpm|yarn|"
        r"choco|winget|port|gem)\s(?:.*\s)?(?:remove|purge|uninstall|autoremove|erase|-r[a-z]*)"
        r"(?:\s|$)",
    ),
    _rule(
        "D112",
        DANGEROUS,
        ReasonCategory.CODE_EXECUTION,
        "content piped or redirected into an interpreter",
        rf"\|\s*{_STDIN_INTERPRETER}(?:\s|$)",
        rf"(?:^|[\s;&|(])(?:\S*/)?{_INTERPRETER}\s+(?:-\S+\s+)*<",
        scope="command",
    ),
    _rule(
        "D113",
        DANGEROUS,
        ReasonCategory.PROTECTED_PATH,
        "change to the audit log",
        r"(?:>|(?:^|\s)(?:tee|rm|unlink|mv|cp|ln|truncate|shred|sed|dd)\s(?:.*\s)?)"
        rf"\s*\S*{_AUDIT_LOG}",
    ),
    _rule(
        "C201",
        CAUTION,
        ReasonCategory.DESTRUCTIVE_DELETE,
        "file deletion",
        r"(?:^|\s)(?:rm|unlink|del|erase|remove-item|ri|rmdir|rd|trash)(?:\s|$)",
        confirm=True,
    ),
    _rule(
        "C202",
        CAUTION,
        ReasonCategory.LOCAL_CHANGE,
        "overwrite, truncation or in-place edit of existing files",
        r"(?<!>)>(?![>&|])\s*(?!/dev/null(?:\s|$))[^\s&|;]",
        r"(?:^|\s)(?:truncate|shred|set-content|sc|out-file)(?:\s|$)",
        r"(?:^|\s)(?:sed|perl)\s(?:.*\s)?-[a-z]*i",
        confirm=True,
    ),
    _rule(
        "C203",
        CAUTION,
        ReasonCategory.CODE_EXECUTION,
        "execution of scripts or inline code",
        r"(?:^|\s)(?:python[\d.]*|py|node|deno|bun|ruby|perl|php|bash|sh|zsh|dash|ksh|fish|"
        r"powershell|pwsh|osascript|cscript|wscript|mshta|rundll32|regsvr32|source|eval)"
        r"\s+(?!--?(?:version|v|help|h)(?:\s|$))\S",
        r"^\S+\.(?:sh|bash|zsh|py|rb|pl|js|ps1|bat|cmd|vbs|command)(?:\s|$)",
        confirm=True,
    ),
    _rule(
        "C301",
        CAUTION,
        ReasonCategory.NETWORK,
        "network access",
        r"(?:^|\s)(?:curl|wget|ssh|scp|sftp|rsync|ftp|telnet|nc|ncat|netcat|aria2c|"
        r"invoke-webrequest|iwr|invoke-restmethod|irm)(?:\s|$)",
        r"(?:^|\s)git\s+(?:clone|pull|push|fetch)(?:\s|$)",
    ),
    _rule(
        "C302",
        CAUTION,
        ReasonCategory.LOCAL_CHANGE,
        "package installation",
        r"(?:^|\s)(?:apt|apt-get|yum|dnf|zypper|pacman|brew|snap|pip\d?|npm|pnpm|yarn|gem|"
        r"cargo|go|choco|winget|conda)\s(?:.*\s)?(?:install|add|upgrade|update|-s)(?:\s|$)",
    ),
)

SHELL_RULES = tuple(sorted(SHELL_RULES, key=lambda rule: rule.risk, reverse=True))

# Programs that only read state. A command made only of these, with no output
# redirection, is safe to run unsupervised.
READ_ONLY_PROGRAMS = frozenset(
    {
        "basename", "cal", "cat", "cd", "cmp", "column", "cut", "date", "df", "diff",
        "dir", "dirname", "du", "echo", "egrep", "fgrep", "file", "find", "fold", "free",
        "grep", "groups", "head", "hexdump", "hostname", "id", "jq", "less", "locate",
        "ls", "lsblk", "lscpu", "man", "md5sum", "more", "nl", "od", "printf", "ps",
        "pwd", "readlink", "realpath", "rev", "rg", "seq", "sha1sum", "sha256sum",
        "shasum", "sleep", "sort", "stat", "strings", "sw_vers", "tac", "tail", "tr",
        "tree", "true", "false", "type", "uname", "uniq", "uptime", "vm_stat", "wc",
        "where", "whereis", "which", "whoami", "xxd", "get-childitem", "gci",
        "get-content", "gc", "get-location", "get-process", "gps", "get-service",
        "get-date", "get-item", "select-string", "sls", "test-path", "resolve-path",
        "write-output", "write-host", "measure-object", "sort-object", "where-object",
        "select-object", "format-table", "out-string", "get-command", "get-help",
    }
)

READ_ONLY_GIT_SUBCOMMANDS = frozenset(
    {"status", "log", "diff", "show", "blame", "ls-files", "rev-parse", "describe",
     "shortlog", "grep", "reflog"}
)

# Options that turn an otherwise read-only program into one with side effects.
WRITING_OPTIONS = {
    "find": frozenset({"-exec", "-execdir", "-ok", "-okdir", "-delete", "-fprint",
                       "-fprintf", "-fls"}),
    "sort": frozenset({"-o", "--output"}),
    "date": frozenset({"-s", "--set"}),
}
