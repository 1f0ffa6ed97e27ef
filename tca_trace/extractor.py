"""
シグナルポストから TCA のアクション / Effect / 共有ステート変更を復元する

判定は上から順に最初に一致したものを採用する:
  1. サブシステムがアプリのバンドルID (".app" 終わり、Apple 以外)
  2. カテゴリが "TCA"
  3. 名前が TCA の signpost 命名規則に一致
  4. メッセージが "Feature.Action.name" / "[Context] ... Feature" に一致
  5. OSフレームワークのシグナルポストは除外
  6. ドット入りサブシステム + アーキテクチャ用語を含む名前
"""

import logging
import re
from dataclasses import dataclass
from typing import Optional

from .models import DomainAction, DomainEffect, MarkerKind, RawMarkerEvent, SharedStateChange

logger = logging.getLogger(__name__)

UNKNOWN_FEATURE = "Unknown"
UNKNOWN_ACTION = "UnknownAction"
UNKNOWN_EFFECT = "UnknownEffect"

TCA_CATEGORY = "TCA"
APPLE_SUBSYSTEM_PREFIX = "com.apple."

# 単発 Effect の最小長（0秒を避けるための表示上の値）
INSTANT_EFFECT_DURATION = 0.001

# TCA の signpost 名 ("Action", "Effect Output" など) や "XxxFeature.yyy"
TCA_NAME_PATTERN = re.compile(
    r"^(?:Action|Effect|Effect Output|Effect Started|Effect Finished)$"
    r"|Feature(?:\.|$)"
    r"|Reducer$"
)
FEATURE_ACTION_PATTERN = re.compile(r"\b(?P<feature>[A-Za-z_]\w*?)Feature\.Action\.(?P<action>[A-Za-z_][\w.]*)")
BRACKET_CONTEXT_PATTERN = re.compile(r"\[(?P<context>[^\[\]]+)\]")
BRACKET_FEATURE_PATTERN = re.compile(r"\[[^\[\]]+\].*Feature")
STATE_CHANGE_PATTERN = re.compile(r"^(?P<property>[^:]*?)\s*(?::\s*(?P<old>.*?))?\s*->\s*(?P<new>.*)$", re.S)

OS_FRAMEWORK_NAMES = frozenset({
    "VSYNC", "Commit", "Layout", "Render", "Display", "CA::Transaction::commit",
    "UIApplication", "NSApplication", "AppLaunch", "BackgroundTask", "PointsOfInterest",
    "SwiftUI.Update", "ViewBodyAccessor", "RunLoop", "Hitch", "Hang",
})
OS_FRAMEWORK_CATEGORIES = frozenset({"PointsOfInterest", "DynamicTracing", "DynamicStackTracing"})
ARCHITECTURE_KEYWORDS = ("Feature", "Reducer", "Action", "Effect", "Store")
GENERIC_NAMES = frozenset({"", "Action", "Effect", "Effect Output", "Effect Started",
                           "Effect Finished", "Event"})
# TCA が Effect 用に出す signpost 名
EFFECT_SIGNPOST_NAMES = frozenset({"Effect", "Effect Output", "Effect Started", "Effect Finished"})

# 表示用に取り除くプレフィックス（os_log のフォーマットトークン、プロセス名ラッパ）
BOILERPLATE_PREFIXES = [
    re.compile(r"^\s*(?:%\{public\}s|%\{public\}@|%s|%@)\s*"),
    re.compile(r"^\s*[\w.-]+\[\d+:[0-9a-fA-Fx]+\]\s*"),
]


def match_feature_action(text: str) -> Optional[tuple[str, str]]:
    """"ReadingLibraryFeature.Action.selectArticle" -> ("ReadingLibrary", "selectArticle")"""
    match = FEATURE_ACTION_PATTERN.search(text or "")
    if not match:
        return None
    return match.group("feature"), match.group("action").rstrip(".")


def match_bracket_context(text: str) -> Optional[str]:
    """"[Scroll] ..." -> "Scroll" """
    match = BRACKET_CONTEXT_PATTERN.search(text or "")
    return match.group("context").strip() if match else None


def parse_state_message(message: str) -> tuple[str, Optional[str], Optional[str]]:
    """
    "property: old -> new" を (property, old, new) に分解する

    ":" や "->" がなくても部分的に返す（例外は出さない）
    """
    text = (message or "").strip()
    if "->" in text:
        match = STATE_CHANGE_PATTERN.match(text)
        if match:
            old = match.group("old")
            return match.group("property").strip(), old.strip() if old is not None else None, \
                match.group("new").strip()
    if ":" in text:
        prop, _, value = text.partition(":")
        return prop.strip(), None, value.strip() or None
    return text, None, None


def strip_feature_suffix(name: str) -> str:
    return name[:-len("Feature")] if name.endswith("Feature") and name != "Feature" else name


def clean_message(message: str) -> str:
    """表示用にメッセージを整形する"""
    text = message or ""
    for pattern in BOILERPLATE_PREFIXES:
        text = pattern.sub("", text, count=1)

    # 同じ Feature.Action.name が2回出ることがあるので2回目以降を削除
    seen: set[str] = set()

    def dedupe(match: re.Match) -> str:
        token = match.group(0)
        if token in seen:
            return ""
        seen.add(token)
        return token

    text = FEATURE_ACTION_PATTERN.sub(dedupe, text)
    text = re.sub(r"\s{2,}", " ", text).strip()

    context = match_bracket_context(text)
    return context if context is not None else text


def is_apple_subsystem(subsystem: str) -> bool:
    return subsystem.startswith(APPLE_SUBSYSTEM_PREFIX) or subsystem == "com.apple"


def is_app_subsystem(subsystem: str) -> bool:
    return subsystem.endswith(".app") and not is_apple_subsystem(subsystem)


def is_tca_name(name: str) -> bool:
    return bool(TCA_NAME_PATTERN.search(name or ""))


def is_tca_message(message: str) -> bool:
    return bool(FEATURE_ACTION_PATTERN.search(message or "")) or \
        bool(BRACKET_FEATURE_PATTERN.search(message or ""))


def is_os_framework_marker(marker: RawMarkerEvent) -> bool:
    return (is_apple_subsystem(marker.subsystem)
            or marker.name in OS_FRAMEWORK_NAMES
            or marker.category in OS_FRAMEWORK_CATEGORIES)


def is_tca_marker(marker: RawMarkerEvent) -> bool:
    """TCA 由来のシグナルポストかどうか"""
    if is_app_subsystem(marker.subsystem):
        return True
    if marker.category == TCA_CATEGORY:
        return True
    if is_tca_name(marker.name):
        return True
    if is_tca_message(marker.message):
        return True
    if is_os_framework_marker(marker):
        return False
    return ("." in marker.subsystem
            and any(keyword in marker.name for keyword in ARCHITECTURE_KEYWORDS))


def filter_tca_markers(markers: list[RawMarkerEvent],
                       subsystem_filter: Optional[str] = None) -> list[RawMarkerEvent]:
    """TCA のシグナルポストだけを残す（順序は維持）"""
    return [
        m for m in markers
        if (not subsystem_filter or subsystem_filter in m.subsystem) and is_tca_marker(m)
    ]


def is_effect_marker(marker: RawMarkerEvent) -> bool:
    return "effect" in marker.name.lower() or "effect" in marker.category.lower()


def is_effect_signpost(marker: RawMarkerEvent) -> bool:
    """Effect 専用の signpost か（"Feature.Action.sideEffectX" のようなアクションは含まない）"""
    return marker.name in EFFECT_SIGNPOST_NAMES or "effect" in marker.category.lower()


def is_state_marker(marker: RawMarkerEvent) -> bool:
    return ("State" in marker.name
            or "State" in marker.category
            or "state" in marker.message.lower())


def feature_name_from(name: str, message: str = "") -> str:
    """名前の先頭 "XxxFeature" から、なければメッセージから Feature 名を得る"""
    first = (name or "").split(".")[0]
    if first.endswith("Feature") and first != "Feature":
        return strip_feature_suffix(first)

    matched = match_feature_action(message)
    if matched:
        return matched[0]
    context = match_bracket_context(message)
    if context:
        return strip_feature_suffix(context)
    if name and name not in GENERIC_NAMES and "." in name:
        return strip_feature_suffix(first)
    return UNKNOWN_FEATURE


def action_name_from(name: str, message: str = "") -> str:
    """"XxxFeature.Action.rest" の rest、なければメッセージから得る"""
    matched = match_feature_action(name)
    if matched:
        return matched[1]

    if name not in GENERIC_NAMES:
        parts = name.split(".")
        if len(parts) >= 3 and parts[1] == "Action":
            return ".".join(parts[2:])
        if len(parts) >= 2:
            return ".".join(parts[1:])

    matched = match_feature_action(message)
    if matched:
        return matched[1]
    if name not in GENERIC_NAMES:
        return name
    return UNKNOWN_ACTION


def effect_name_from(name: str, message: str = "") -> str:
    if name not in GENERIC_NAMES:
        return name.split(".")[-1] if "." in name else name
    matched = match_feature_action(message)
    if matched:
        return matched[1]
    cleaned = clean_message(message)
    return cleaned or UNKNOWN_EFFECT


@dataclass
class SignpostExtractor:
    """シグナルポスト列から TCA のイベントを組み立てる"""
    instant_effect_duration: float = INSTANT_EFFECT_DURATION

    def extract_actions(self, markers: list[RawMarkerEvent]) -> list[DomainAction]:
        actions: list[DomainAction] = []
        open_markers: dict[str, RawMarkerEvent] = {}

        for marker in sorted(markers, key=lambda m: m.timestamp):
            if is_effect_signpost(marker) and (marker.kind is MarkerKind.BEGIN or marker.id not in open_markers):
                continue
            if marker.kind is MarkerKind.BEGIN:
                open_markers[marker.id] = marker
            elif marker.kind is MarkerKind.END:
                begin = open_markers.pop(marker.id, None)
                if begin is None:
                    logger.debug("End signpost without Begin: %s", marker.id)
                    continue
                actions.append(self._action(begin, marker.timestamp - begin.timestamp))
            else:
                actions.append(self._action(marker, 0.0))

        # End が来なかった Begin（トレース途中終了）も残す
        for begin in open_markers.values():
            actions.append(self._action(begin, 0.0))

        return sorted(actions, key=lambda a: a.timestamp)

    def extract_effects(self, markers: list[RawMarkerEvent]) -> list[DomainEffect]:
        effects: list[DomainEffect] = []
        open_markers: dict[str, RawMarkerEvent] = {}

        for marker in sorted(markers, key=lambda m: m.timestamp):
            # End は名前を持たないことがあるので id でも拾う
            if not is_effect_marker(marker) and (marker.kind is MarkerKind.BEGIN or marker.id not in open_markers):
                continue
            if marker.kind is MarkerKind.BEGIN:
                open_markers[marker.id] = marker
            elif marker.kind is MarkerKind.END:
                begin = open_markers.pop(marker.id, None)
                if begin is None:
                    logger.debug("End effect signpost without Begin: %s", marker.id)
                    continue
                effects.append(self._effect(begin, marker.timestamp))
            elif marker.id in open_markers:
                # 開いている Begin と同じ id の単発イベントは終了として扱う
                begin = open_markers.pop(marker.id)
                effects.append(self._effect(begin, marker.timestamp))
            else:
                effects.append(self._effect(marker, marker.timestamp + self.instant_effect_duration))

        for begin in open_markers.values():
            effects.append(self._effect(begin, begin.timestamp))

        return sorted(effects, key=lambda e: e.start_time)

    def extract_shared_state_changes(self, markers: list[RawMarkerEvent]) -> list[SharedStateChange]:
        changes = []
        for marker in markers:
            if not is_state_marker(marker):
                continue
            prop, old_value, new_value = parse_state_message(marker.message)
            changes.append(SharedStateChange(
                feature_name=feature_name_from(marker.name, marker.message),
                timestamp=marker.timestamp,
                property=prop,
                old_value=old_value,
                new_value=new_value,
            ))
        return sorted(changes, key=lambda c: c.timestamp)

    def _action(self, begin: RawMarkerEvent, duration: float) -> DomainAction:
        return DomainAction(
            feature_name=feature_name_from(begin.name, begin.message),
            action_name=action_name_from(begin.name, begin.message),
            timestamp=begin.timestamp,
            duration=duration,
            metadata=begin.message or None,
        )

    def _effect(self, begin: RawMarkerEvent, end_time: float) -> DomainEffect:
        return DomainEffect(
            name=effect_name_from(begin.name, begin.message),
            feature_name=feature_name_from(begin.name, begin.message),
            start_time=begin.timestamp,
            end_time=end_time,
        )
