"""JavaScript evaluated inside the page.

Each constant is a single arrow function handed to page.evaluate(script, arg).
Element-targeting scripts take the field's DOM path as selector and throw
when the element is missing.
"""

from __future__ import annotations

__all__ = [
    'ELEMENT_EXISTS_JS',
    'HIGHLIGHT_FIELD_JS',
    'PAGE_INFO_JS',
    'READ_VALUE_JS',
    'SAFETY_GUARD_JS',
    'SAFETY_GUARD_MARKER',
    'SCAN_FIELDS_JS',
    'SET_VALUE_JS',
]

# Eligible: inputs except hidden/password/file, plus textareas.
# Label priority: label[for] > wrapping label > aria-label > aria-labelledby > name > placeholder.
SCAN_FIELDS_JS = r"""
() => {
    const nodes = Array.from(document.querySelectorAll(
        'input:not([type=hidden]):not([type=password]):not([type=file]), textarea'
    ));

    const uniq = (arr) => Array.from(new Set(arr.map((v) => (v || '').trim()).filter(Boolean)));
    const text = (node) => ((node && node.textContent) || '').trim();

    // Anchored at an id unique in the document, or else at body, so the path matches one element.
    const cssPath = (el) => {
        const parts = [];
        let node = el;
        while (node && node.nodeType === Node.ELEMENT_NODE) {
            if (node === document.body) {
                parts.unshift('body');
                break;
            }
            let part = node.tagName.toLowerCase();
            if (node.id && document.querySelectorAll('#' + CSS.escape(node.id)).length === 1) {
                parts.unshift(part + '#' + CSS.escape(node.id));
                break;
            }
            const parent = node.parentElement;
            if (parent) {
                const sameTag = Array.from(parent.children).filter((c) => c.tagName === node.tagName);
                if (sameTag.length > 1) {
                    part += ':nth-of-type(' + (sameTag.indexOf(node) + 1) + ')';
                }
            }
            parts.unshift(part);
            node = parent;
        }
        return parts.join(' > ');
    };

    const readLabel = (el) => {
        if (el.id) {
            const byFor = text(document.querySelector('label[for="' + CSS.escape(el.id) + '"]'));
            if (byFor) return byFor;
        }
        const wrapping = text(el.closest('label'));
        if (wrapping) return wrapping;
        const aria = (el.getAttribute('aria-label') || '').trim();
        if (aria) return aria;
        const labelledBy = el.getAttribute('aria-labelledby');
        if (labelledBy) {
            const parts = labelledBy.split(/\s+/).map((id) => text(document.getElementById(id))).filter(Boolean);
            if (parts.length > 0) return parts.join(' ');
        }
        return el.getAttribute('name') || el.getAttribute('placeholder') || '(unlabeled field)';
    };

    const nearbyHints = (el) => {
        const parent = el.parentElement;
        if (!parent) return [];
        const hints = [];
        for (const selector of ['.help', '.hint', '.description', '.helper', '[data-help]', '[data-hint]']) {
            parent.querySelectorAll(selector).forEach((node) => hints.push(text(node)));
        }
        Array.from(parent.children)
            .filter((n) => n !== el)
            .map(text)
            .filter((t) => /character|word|자|글자|영문|한글/i.test(t))
            .forEach((t) => hints.push(t));
        return uniq(hints).slice(0, 4);
    };

    const fields = nodes.map((el) => {
        const isTextarea = el.tagName.toLowerCase() === 'textarea';
        return {
            domPath: cssPath(el),
            kind: isTextarea ? 'textarea' : 'input',
            inputType: isTextarea ? null : (el.type || 'text'),
            name: el.getAttribute('name') || null,
            label: readLabel(el),
            placeholder: el.getAttribute('placeholder') || null,
            hints: nearbyHints(el),
            required: Boolean(el.required),
            maxLength: el.maxLength && el.maxLength > 0 ? el.maxLength : null,
            pattern: el.getAttribute('pattern') || null,
        };
    });

    return {
        fields,
        excluded: {
            contentEditable: document.querySelectorAll('[contenteditable]:not([contenteditable="false"])').length,
            frames: document.querySelectorAll('iframe, frame').length,
        },
    };
}
"""

ELEMENT_EXISTS_JS = """
(selector) => document.querySelectorAll(selector).length === 1
"""

READ_VALUE_JS = """
(selector) => {
    const node = document.querySelector(selector);
    if (!node) throw new Error('Field not found');
    return node.value || '';
}
"""

# Native setter first so framework-controlled inputs see the change, then the
# input + change notifications. Returns the value the element holds afterwards.
SET_VALUE_JS = """
({ selector, text }) => {
    const node = document.querySelector(selector);
    if (!node) throw new Error('Field not found');
    const proto = Object.getPrototypeOf(node);
    const desc = proto ? Object.getOwnPropertyDescriptor(proto, 'value') : null;
    if (desc && typeof desc.set === 'function') {
        desc.set.call(node, text);
    } else {
        node.value = text;
    }
    node.dispatchEvent(new Event('input', { bubbles: true }));
    node.dispatchEvent(new Event('change', { bubbles: true }));
    return node.value;
}
"""

HIGHLIGHT_FIELD_JS = """
(selector) => {
    const node = document.querySelector(selector);
    if (!node) throw new Error('Field not found');
    const original = node.style.outline;
    node.style.outline = '3px solid #ff6b00';
    node.scrollIntoView({ behavior: 'smooth', block: 'center' });
    setTimeout(() => { node.style.outline = original; }, 2000);
}
"""

PAGE_INFO_JS = """
() => ({ url: window.location.href, title: document.title })
"""

SAFETY_GUARD_MARKER = '[dalil] blocked'

# Installed as an init script and therefore a plain statement, not a function.
SAFETY_GUARD_JS = """
(() => {
    if (window.__dalil_original_submit__) return;
    const originalSubmit = HTMLFormElement.prototype.submit;
    HTMLFormElement.prototype.submit = function blockedSubmit() {
        console.warn('[dalil] blocked form.submit()');
    };
    HTMLFormElement.prototype.requestSubmit = function blockedRequestSubmit() {
        console.warn('[dalil] blocked form.requestSubmit()');
    };
    Object.defineProperty(window, '__dalil_original_submit__', {
        value: originalSubmit,
        configurable: false,
        writable: false,
    });
})()
"""
