"""Browser-side helpers evaluated once per realm.

The returned object exposes ``createFunction`` and three pollers sharing one
shape: ``start()`` begins checking the predicate, ``result()`` returns a
promise for its first truthy value, ``stop()`` rejects a still-pending
result and releases timers or observers. Cadence lives entirely in the page.
"""

from __future__ import annotations

import re

INJECTED_SOURCE = r"""
(() => {
  const cache = new Map();

  const createFunction = (source) => {
    let fn = cache.get(source);
    if (!fn) {
      fn = new Function(`return (${source});`)();
      cache.set(source, fn);
    }
    return fn;
  };

  class Deferred {
    constructor() {
      this.finished = false;
      this.promise = new Promise((resolve, reject) => {
        this._resolve = resolve;
        this._reject = reject;
      });
      this.promise.catch(() => {});
    }
    resolve(value) {
      if (this.finished) return;
      this.finished = true;
      this._resolve(value);
    }
    reject(error) {
      if (this.finished) return;
      this.finished = true;
      this._reject(error);
    }
  }

  class RAFPoller {
    constructor(fn) {
      this.fn = fn;
      this.deferred = new Deferred();
    }
    start() {
      const fail = (error) => this.deferred.reject(error);
      const tick = async () => {
        if (this.deferred.finished) return;
        const value = await this.fn();
        if (this.deferred.finished) return;
        if (value) {
          this.deferred.resolve(value);
          return;
        }
        window.requestAnimationFrame(() => tick().catch(fail));
      };
      tick().catch(fail);
    }
    async stop() {
      this.deferred.reject(new Error('Polling stopped'));
    }
    result() {
      return this.deferred.promise;
    }
  }

  class MutationPoller {
    constructor(fn, root) {
      this.fn = fn;
      this.root = root;
      this.observer = null;
      this.deferred = new Deferred();
    }
    start() {
      const fail = (error) => {
        this.deferred.reject(error);
        this.disconnect();
      };
      const check = async () => {
        const value = await this.fn();
        if (!value || this.deferred.finished) return;
        this.deferred.resolve(value);
        this.disconnect();
      };
      this.observer = new MutationObserver(() => check().catch(fail));
      this.observer.observe(this.root, {childList: true, subtree: true, attributes: true});
      check().catch(fail);
    }
    disconnect() {
      if (this.observer) {
        this.observer.disconnect();
        this.observer = null;
      }
    }
    async stop() {
      this.deferred.reject(new Error('Polling stopped'));
      this.disconnect();
    }
    result() {
      return this.deferred.promise;
    }
  }

  class IntervalPoller {
    constructor(fn, ms) {
      this.fn = fn;
      this.ms = ms;
      this.timer = null;
      this.deferred = new Deferred();
    }
    start() {
      const fail = (error) => {
        this.deferred.reject(error);
        this.clear();
      };
      const tick = async () => {
        if (this.deferred.finished) return;
        const value = await this.fn();
        if (!value || this.deferred.finished) return;
        this.deferred.resolve(value);
        this.clear();
      };
      this.timer = setInterval(() => tick().catch(fail), this.ms);
      tick().catch(fail);
    }
    clear() {
      if (this.timer !== null) {
        clearInterval(this.timer);
        this.timer = null;
      }
    }
    async stop() {
      this.deferred.reject(new Error('Polling stopped'));
      this.clear();
    }
    result() {
      return this.deferred.promise;
    }
  }

  return {createFunction, Deferred, RAFPoller, MutationPoller, IntervalPoller};
})()
"""

# (util, predicateSource, polling, root, ...args) => poller, already started.
CREATE_POLLER = """(util, predicate, polling, root, ...args) => {
  const fn = util.createFunction(predicate);
  const check = () => fn(...args);
  let poller;
  if (polling === 'raf') {
    poller = new util.RAFPoller(check);
  } else if (polling === 'mutation') {
    poller = new util.MutationPoller(check, root || document);
  } else {
    poller = new util.IntervalPoller(check, polling);
  }
  poller.start();
  return poller;
}"""

AWAIT_RESULT = "poller => poller.result()"

STOP_POLLER = "async poller => { await poller.stop(); }"

_IIFE_RE = re.compile(r"\)\s*\(\s*\)\s*;?\s*\Z")
_ARROW_RE = re.compile(r"\A\s*(?:async\s+)?(?:\([^()]*\)|[A-Za-z_$][\w$]*)\s*=>")
_FUNCTION_RE = re.compile(r"\A\s*(?:async\s+)?function\b\s*\*?\s*[\w$]*\s*\(")


def is_function_source(script: str) -> bool:
    """True when ``script`` is a function declaration or arrow, not an expression."""
    text = (script or "").strip()
    if _IIFE_RE.search(text):
        return False
    return bool(_ARROW_RE.match(text) or _FUNCTION_RE.match(text))


def function_source(script: str) -> str:
    text = (script or "").strip()
    if is_function_source(text):
        return text
    return f"() => {{return ({text});}}"
