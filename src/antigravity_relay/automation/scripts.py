"""Adapter scripts for the Antigravity agent panel.

Everything that depends on the IDE's markup (selectors, button captions,
keyword lists) lives here. Each builder returns an :class:`Adapter` whose
script resolves to a JSON object with an ``ok`` flag, plus ``value``,
``message``, ``method`` or ``reason`` depending on the operation.
"""

from __future__ import annotations

import json
from typing import Any

from .dispatcher import Adapter

# Agent panel iframe / context marker
PANEL_KEYWORD = "cascade-panel"

SELECTORS: dict[str, Any] = {
    "chatInput": 'div[contenteditable="true"][role="textbox"], div[contenteditable="true"], textarea',
    "submitButton": "button",
    "submitIconClasses": ["lucide-arrow-right", "lucide-send", "codicon-send"],
    "cancelButton": '[data-tooltip-id="input-send-button-cancel-tooltip"]',
    "clickable": 'button, [role="button"], .cursor-pointer',
    "newChat": [
        '[data-tooltip-id="new-conversation-tooltip"]',
        '[data-tooltip-id*="new-chat"]',
        '[data-tooltip-id*="new_chat"]',
        '[aria-label*="New Chat"]',
        '[aria-label*="New Conversation"]',
    ],
}

APPROVE_WORDS = [
    "run", "approve", "allow", "yes", "accept", "confirm",
    "save", "apply", "create", "update", "delete", "remove", "submit", "send", "retry", "continue",
    "always allow", "allow once", "allow this conversation",
    "実行", "許可", "承認", "はい", "同意", "保存", "適用", "作成", "更新", "削除", "送信", "再試行", "続行",
]
# Captions that anchor an approval row (the "cancel" side of the pair)
ANCHOR_WORDS = ["cancel", "reject", "deny", "ignore", "キャンセル", "拒否", "無視", "いいえ", "不許可"]
REJECT_WORDS = ANCHOR_WORDS + ["no", "中止"]
# Bulk actions are never clicked on the user's behalf
IGNORE_WORDS = ["all", "すべて", "一括", "auto"]

MODEL_WORDS = ["claude", "gemini", "gpt", "o1", "o3"]
MODEL_FAMILIES = ["claude", "gemini", "gpt"]
MODES = ["Planning", "Fast"]

_HELPERS = r"""
function panelDoc(fallback) {
  for (const frame of document.querySelectorAll('iframe')) {
    if ((frame.src || '').includes(PANEL)) {
      try { if (frame.contentDocument) return frame.contentDocument; } catch (e) {}
    }
  }
  return fallback;
}
function allDocs() {
  const docs = [document];
  for (const frame of document.querySelectorAll('iframe')) {
    try { if (frame.contentDocument) docs.push(frame.contentDocument); } catch (e) {}
  }
  return docs;
}
function visible(el) { return el.offsetWidth > 0 && el.offsetHeight > 0; }
function label(el) { return (el.innerText || '').trim().toLowerCase(); }
function sleep(ms) { return new Promise(r => setTimeout(r, ms)); }
"""

_MODEL_HELPERS = r"""
function findModelButton() {
  for (const doc of allDocs()) {
    for (const btn of doc.querySelectorAll('button, div[role="button"]')) {
      const txt = (btn.textContent || '').trim();
      const lower = txt.toLowerCase();
      if (btn.hasAttribute('aria-expanded') && (MODEL_WORDS.some(k => lower.includes(k)) || lower.includes('model'))) {
        return { doc, btn, txt };
      }
      if (txt.length > 3 && txt.length < 50 && MODEL_FAMILIES.some(k => lower.includes(k)) && btn.querySelector('svg')) {
        return { doc, btn, txt };
      }
    }
  }
  return null;
}
function modelOptions(doc) {
  const out = [];
  for (const opt of doc.querySelectorAll('div.cursor-pointer')) {
    if (!opt.className.includes('px-') && !opt.className.includes('py-')) continue;
    out.push({ el: opt, txt: (opt.textContent || '').replace('New', '').trim() });
  }
  return out;
}
function closeMenu(doc) {
  const open = doc.querySelector('button[aria-expanded="true"], div[role="button"][aria-expanded="true"]');
  if (open) open.click();
}
"""


def _script(body: str, asynchronous: bool = False, extra: str = "", **consts: Any) -> str:
    """Wrap *body* in an IIFE with the shared helpers and JSON-encoded constants."""
    lines = [f"const PANEL = {json.dumps(PANEL_KEYWORD)};"]
    lines += [f"const {name} = {json.dumps(value, ensure_ascii=False)};" for name, value in consts.items()]
    prefix = "(async () => {" if asynchronous else "(() => {"
    return "\n".join([prefix, *lines, _HELPERS, extra, body, "})()"])


def inject_message(text: str) -> Adapter:
    body = r"""
const editors = Array.from(document.querySelectorAll(SEL.chatInput)).filter(el => el.offsetParent !== null);
const editor = editors[editors.length - 1];
if (!editor) return { ok: false, reason: 'No editor found in this context' };
editor.focus();
if (!document.execCommand('insertText', false, TEXT)) {
  editor.textContent = TEXT;
  editor.dispatchEvent(new InputEvent('beforeinput', { bubbles: true, inputType: 'insertText', data: TEXT }));
}
editor.dispatchEvent(new InputEvent('input', { bubbles: true, inputType: 'insertText', data: TEXT }));
await sleep(200);
const submit = Array.from(document.querySelectorAll(SEL.submitButton)).find(btn => {
  if (btn.disabled || btn.offsetWidth === 0) return false;
  const svg = btn.querySelector('svg');
  if (svg) {
    const cls = (svg.getAttribute('class') || '') + ' ' + (btn.getAttribute('class') || '');
    if (SEL.submitIconClasses.some(c => cls.includes(c))) return true;
  }
  return ['send', 'run'].includes(label(btn));
});
if (submit) { submit.click(); return { ok: true, method: 'click' }; }
editor.dispatchEvent(new KeyboardEvent('keydown', { bubbles: true, key: 'Enter', code: 'Enter' }));
return { ok: true, method: 'enter' };
"""
    return Adapter(
        name="inject_message",
        script=_script(body, asynchronous=True, SEL=SELECTORS, TEXT=text),
        await_promise=True,
    )


def is_generating() -> Adapter:
    body = r"""
const cancel = panelDoc(document).querySelector(SEL.cancelButton);
return { ok: !!(cancel && cancel.offsetParent !== null) };
"""
    return Adapter(name="is_generating", script=_script(body, SEL=SELECTORS))


def approval_prompt() -> Adapter:
    body = r"""
const doc = panelDoc(document);
if (!doc || !doc.body) return { ok: false };
function isAnchor(el) {
  if (!visible(el)) return false;
  const t = label(el);
  return ANCHOR.some(k => t === k || t.startsWith(k + ' '));
}
function isApprove(btn, anchor) {
  if (btn === anchor || btn.offsetWidth === 0) return false;
  const combined = [label(btn), btn.getAttribute('aria-label') || '', btn.getAttribute('title') || ''].join(' ').toLowerCase();
  return APPROVE.some(k => combined.includes(k)) && !IGNORE.some(k => combined.includes(k));
}
function describe(scope) {
  const prose = scope.closest('.prose');
  const item = scope.closest('.flex.flex-col.gap-2.border-gray-500\\/25') || scope.closest('.group') || (prose && prose.parentElement);
  if (!item) return 'Command or Action requiring approval';
  const parts = [];
  const header = item.querySelector('.text-sm.border-b') || item.querySelector('.font-semibold');
  const text = item.querySelector('.prose');
  const pre = item.querySelector('pre');
  if (header) parts.push('[Header] ' + header.innerText.trim());
  if (text) parts.push(text.innerText.trim());
  if (pre) parts.push('[Command] ' + pre.innerText.trim());
  return parts.length ? parts.join('\n\n') : item.innerText.trim();
}
function scan(root) {
  const anchors = Array.from(root.querySelectorAll(SEL.clickable)).filter(isAnchor);
  for (const anchor of anchors) {
    const container = anchor.closest('.flex') || anchor.parentElement;
    const parent = container && container.parentElement;
    if (!parent) continue;
    const scope = parent.parentElement || parent;
    if (Array.from(scope.querySelectorAll(SEL.clickable)).some(b => isApprove(b, anchor))) return describe(scope);
  }
  const walker = doc.createTreeWalker(root, NodeFilter.SHOW_ELEMENT);
  let node;
  while ((node = walker.nextNode())) {
    if (node.shadowRoot) {
      const found = scan(node.shadowRoot);
      if (found) return found;
    }
  }
  return null;
}
const message = scan(doc.body);
return message ? { ok: true, message: message.substring(0, 1500) } : { ok: false };
"""
    return Adapter(
        name="approval_prompt",
        script=_script(
            body,
            SEL=SELECTORS,
            APPROVE=APPROVE_WORDS,
            ANCHOR=ANCHOR_WORDS,
            IGNORE=IGNORE_WORDS,
        ),
    )


def click_approval(allow: bool, timeout: float = 5.0) -> Adapter:
    body = r"""
const doc = panelDoc(document);
if (!doc.body) return { ok: false, reason: 'no document body' };
const buttons = Array.from(doc.body.querySelectorAll(SEL.clickable)).filter(b => b.offsetWidth > 0);
const isReject = t => REJECT.some(k => t === k || t.startsWith(k + ' '));
if (!ALLOW) {
  const anchor = buttons.find(b => isReject(label(b)));
  if (!anchor) return { ok: false, reason: 'No reject button found' };
  anchor.click();
  return { ok: true, method: 'reject', label: label(anchor) };
}
function matchWord(text, word) {
  if (word.length <= 4) return text === word || text.startsWith(word) || text.includes(' ' + word);
  return text.includes(word);
}
function rank(btn) {
  const t = label(btn);
  if (t.includes('allow this conversation')) return 2;
  if (t.includes('always allow')) return 1;
  return 0;
}
const candidates = buttons.filter(btn => {
  const t = label(btn);
  if (t.length > 30 || isReject(t)) return false;
  const combined = [t, (btn.getAttribute('aria-label') || '').toLowerCase().trim(), (btn.getAttribute('title') || '').toLowerCase().trim()].join(' ');
  return APPROVE.some(k => matchWord(combined, k)) && !IGNORE.some(k => combined.includes(k));
}).sort((a, b) => rank(b) - rank(a));
if (!candidates.length) return { ok: false, reason: 'No approval button found' };
candidates[0].click();
return { ok: true, method: 'approve', label: label(candidates[0]).substring(0, 30) };
"""
    return Adapter(
        name="click_approval",
        script=_script(
            body,
            asynchronous=True,
            SEL=SELECTORS,
            ALLOW=allow,
            APPROVE=APPROVE_WORDS,
            REJECT=REJECT_WORDS,
            IGNORE=IGNORE_WORDS,
        ),
        await_promise=True,
        timeout=timeout,
    )


def last_response() -> Adapter:
    body = r"""
const doc = panelDoc(document);
const nodes = doc.querySelectorAll('[data-message-role="assistant"], .prose, .group.relative.flex.gap-3');
if (!nodes.length) return { ok: false };
const last = nodes[nodes.length - 1];
const text = last.innerText || '';
return { ok: text.length > 0, text, images: Array.from(last.querySelectorAll('img')).map(img => img.src) };
"""
    return Adapter(name="last_response", script=_script(body))


def stop_generation() -> Adapter:
    body = r"""
const doc = panelDoc(document);
const cancel = doc.querySelector(SEL.cancelButton);
if (cancel && cancel.offsetParent !== null) { cancel.click(); return { ok: true, method: 'cancel' }; }
for (const btn of doc.querySelectorAll('button')) {
  const t = label(btn);
  if (t === 'stop' || t === '停止') { btn.click(); return { ok: true, method: 'stop' }; }
}
return { ok: false, reason: 'Cancel button not found' };
"""
    return Adapter(name="stop_generation", script=_script(body, SEL=SELECTORS))


def new_chat() -> Adapter:
    body = r"""
const docs = [document];
const panel = panelDoc(null);
if (panel) docs.push(panel);
for (const doc of docs) {
  for (const sel of SEL.newChat) {
    const btn = doc.querySelector(sel);
    if (btn) { btn.click(); return { ok: true, method: sel }; }
  }
}
return { ok: false, reason: 'New chat button not found' };
"""
    return Adapter(name="new_chat", script=_script(body, SEL=SELECTORS))


def current_title() -> Adapter:
    body = r"""
for (const doc of allDocs()) {
  for (const el of doc.querySelectorAll('p.text-ide-sidebar-title-color')) {
    const t = (el.innerText || '').trim();
    if (t.length > 1) return { ok: true, value: t };
  }
}
return { ok: false };
"""
    return Adapter(name="current_title", script=_script(body))


def current_model() -> Adapter:
    body = r"""
const found = findModelButton();
return found ? { ok: true, value: found.txt } : { ok: false };
"""
    return Adapter(
        name="current_model",
        script=_script(
            body, extra=_MODEL_HELPERS, MODEL_WORDS=MODEL_WORDS, MODEL_FAMILIES=MODEL_FAMILIES
        ),
    )


def list_models() -> Adapter:
    body = r"""
const found = findModelButton();
if (!found) return { ok: false, reason: 'model selector not found' };
found.btn.click();
await sleep(1000);
const models = [];
for (const { txt } of modelOptions(found.doc)) {
  const lower = txt.toLowerCase();
  if (txt.length > 3 && txt.length < 50 && MODEL_WORDS.some(k => lower.includes(k)) && !models.includes(txt)) {
    models.push(txt);
  }
}
closeMenu(found.doc);
return { ok: models.length > 0, models };
"""
    return Adapter(
        name="list_models",
        script=_script(
            body,
            asynchronous=True,
            extra=_MODEL_HELPERS,
            MODEL_WORDS=MODEL_WORDS,
            MODEL_FAMILIES=MODEL_FAMILIES,
        ),
        await_promise=True,
    )


def switch_model(name: str) -> Adapter:
    body = r"""
const found = findModelButton();
if (!found) return { ok: false, reason: 'button not found' };
found.btn.click();
await sleep(1000);
const target = TARGET.toLowerCase();
for (const { el, txt } of modelOptions(found.doc)) {
  if (txt.toLowerCase().includes(target)) { el.click(); return { ok: true, value: txt }; }
}
closeMenu(found.doc);
return { ok: false, reason: 'model not found in options list' };
"""
    return Adapter(
        name="switch_model",
        script=_script(
            body,
            asynchronous=True,
            extra=_MODEL_HELPERS,
            MODEL_WORDS=MODEL_WORDS,
            MODEL_FAMILIES=MODEL_FAMILIES,
            TARGET=name,
        ),
        await_promise=True,
    )


def current_mode() -> Adapter:
    body = r"""
for (const span of panelDoc(document).querySelectorAll('span.text-xs.select-none')) {
  const t = (span.innerText || '').trim();
  if (MODES.includes(t)) return { ok: true, value: t };
}
return { ok: false };
"""
    return Adapter(name="current_mode", script=_script(body, MODES=MODES))


def switch_mode(mode: str) -> Adapter:
    body = r"""
const doc = panelDoc(document);
const toggle = Array.from(doc.querySelectorAll('div[role="button"][aria-haspopup="dialog"]'))
  .find(t => MODES.includes((t.innerText || '').trim()));
if (!toggle) return { ok: false, reason: 'toggle not found' };
(toggle.querySelector('button') || toggle).click();
await sleep(1000);
const target = TARGET.toLowerCase();
for (const dialog of doc.querySelectorAll('div[role="dialog"]')) {
  const txt = dialog.innerText || '';
  if (!txt.includes('Conversation mode') && !MODES.every(m => txt.includes(m))) continue;
  for (const option of dialog.querySelectorAll('div.font-medium')) {
    if (option.innerText.trim().toLowerCase() === target) {
      option.click();
      return { ok: true, value: option.innerText.trim() };
    }
  }
}
return { ok: false, reason: 'mode not found in dialog' };
"""
    return Adapter(
        name="switch_mode",
        script=_script(body, asynchronous=True, MODES=MODES, TARGET=mode),
        await_promise=True,
    )
