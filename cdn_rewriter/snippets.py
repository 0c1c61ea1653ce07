"""Browser-side payloads injected into documents by the transform stages.

Templates use ``{{NAME}}`` placeholders filled by :func:`render` with values
already encoded through :func:`cdn_rewriter.utils.script_json`. None of the
payloads contain a literal script ``src`` attribute, stylesheet link or image
tag, so later stages never mistake injected markup for page content.
"""

from __future__ import annotations

from typing import Iterable, Tuple

PLACEHOLDER_IMAGE = (
    "data:image/svg+xml,%3Csvg xmlns='http://www.w3.org/2000/svg' viewBox='0 0 1 1'%3E%3C/svg%3E"
)


def render(template: str, **values: str) -> str:
    """Substitute ``{{NAME}}`` tokens; values must already be safe for a script."""
    for name, value in values.items():
        template = template.replace("{{" + name + "}}", value)
    return template


CSP_CONNECT_SRC: Tuple[str, ...] = (
    "*.google.com",
    "*.google-analytics.com",
    "*.analytics.google.com",
    "*.googletagmanager.com",
    "*.doubleclick.net",
    "*.facebook.com",
    "*.facebook.net",
    "*.fbcdn.net",
    "connect.facebook.net",
    "*.googleapis.com",
    "*.gstatic.com",
    "*.ccm.collect",
    "*.nr-data.net",
    "*.newrelic.com",
)
CSP_IMG_SRC: Tuple[str, ...] = (
    "*.google.com",
    "*.google-analytics.com",
    "*.googletagmanager.com",
    "*.google.com.eg",
    "*.googleapis.com",
    "*.gstatic.com",
    "*.doubleclick.net",
    "*.facebook.com",
    "*.facebook.net",
    "*.fbcdn.net",
)
CSP_SCRIPT_SRC: Tuple[str, ...] = (
    "*.google.com",
    "*.google-analytics.com",
    "*.googletagmanager.com",
    "*.googleapis.com",
    "*.gstatic.com",
    "*.doubleclick.net",
    "*.facebook.com",
    "*.facebook.net",
    "connect.facebook.net",
    "*.fbcdn.net",
    "*.tabby.ai",
    "*.jsdelivr.net",
)
CSP_STYLE_SRC: Tuple[str, ...] = ("*.googleapis.com", "*.gstatic.com", "*.jsdelivr.net")
CSP_FRAME_SRC: Tuple[str, ...] = (
    "*.doubleclick.net",
    "*.google.com",
    "*.facebook.com",
    "*.facebook.net",
)


def _sources(domains: Iterable[str], *extra: str) -> str:
    return " ".join(list(domains) + list(extra))


def content_security_policy() -> str:
    """The relaxed policy string for the injected CSP meta tag."""
    directives = (
        "connect-src " + _sources(CSP_CONNECT_SRC, "'self'"),
        "img-src " + _sources(CSP_IMG_SRC, "data:", "'self'"),
        "script-src " + _sources(CSP_SCRIPT_SRC, "'unsafe-inline'", "'unsafe-eval'", "'self'"),
        "style-src " + _sources(CSP_STYLE_SRC, "'unsafe-inline'", "'self'"),
        "frame-src " + _sources(CSP_FRAME_SRC, "'self'"),
        "worker-src blob: 'self'",
        "child-src blob: 'self'",
        "font-src * data: 'self'",
    )
    return "; ".join(directives)


WEBP_CLS_STYLE = (
    "<style>.image-cls-fix { aspect-ratio: attr(width) / attr(height); } "
    "img:not([width]):not([height]) { aspect-ratio: 16/9; min-height: 1px; } "
    "picture { display: inline-block; } "
    "picture img { width: 100%; height: auto; }</style>"
)

SCRIPT_ERROR_HANDLING = """
<script>
(function() {
    var originalQuerySelector = Document.prototype.querySelector;
    var originalQuerySelectorAll = Document.prototype.querySelectorAll;
    Document.prototype.querySelector = function(selector) {
        try {
            return originalQuerySelector.call(this, selector);
        } catch (e) {
            console.warn("Error in querySelector for: " + selector);
            return null;
        }
    };
    Document.prototype.querySelectorAll = function(selector) {
        try {
            return originalQuerySelectorAll.call(this, selector);
        } catch (e) {
            console.warn("Error in querySelectorAll for: " + selector);
            return [];
        }
    };
    var originalAddEventListener = EventTarget.prototype.addEventListener;
    EventTarget.prototype.addEventListener = function(type, listener, options) {
        if (this === null || this === undefined) {
            console.warn("Cannot add event listener to null/undefined element");
            return;
        }
        return originalAddEventListener.call(this, type, listener, options);
    };
    window.fbq = window.fbq || function() {};
    window.ga = window.ga || function() {};
    window.gtag = window.gtag || function() {};
    window._fbq = window._fbq || function() {};
})();
</script>
"""

PROGRESSIVE_SHELL_STYLE = """
<style>
body { opacity: 1; transition: opacity 0.2s; display: block; }
.lazy-content { opacity: 0; transition: opacity 0.5s; min-height: 120px; position: relative; }
.lazy-content.loaded { opacity: 1; }
.image-placeholder { background-color: #f0f0f0; display: inline-block; position: relative; }
.loading-spinner {
    width: 40px; height: 40px;
    border: 4px solid rgba(0, 0, 0, 0.1); border-left-color: #7986cb; border-radius: 50%;
    animation: spin 1s linear infinite;
    position: absolute; top: 50%; left: 50%; margin-top: -20px; margin-left: -20px;
}
@keyframes spin { to { transform: rotate(360deg); } }
</style>
"""

PROGRESSIVE_CRITICAL_CSS = """
<script>
(function() {
    var cssUrl = {{CSS_URL}};
    if (!cssUrl || !window.fetch) return;
    var criticalSelectors = [
        "body", "header", ".logo", ".navigation", ".banner",
        ".block-search", ".minicart-wrapper", ".page-wrapper",
        ".page-header", ".navbar", ".main", "h1", "h2", "p", "a"
    ];
    fetch(cssUrl).then(function(response) {
        return response.text();
    }).then(function(css) {
        var rules = "";
        css.replace(/([^{]+)({[^}]*})/g, function(match, selector, body) {
            selector = selector.trim();
            if (criticalSelectors.some(function(part) { return selector.indexOf(part) !== -1; })) {
                rules += selector + body + "\\n";
            }
        });
        var style = document.createElement("style");
        style.textContent = rules;
        document.head.appendChild(style);
    });
})();
</script>
"""

PROGRESSIVE_LOADER = """
<script>
(function() {
    var loaded = false;
    function isInViewport(el) {
        var rect = el.getBoundingClientRect();
        return rect.top <= (window.innerHeight || document.documentElement.clientHeight) + 200 &&
            rect.bottom >= 0;
    }
    function showImage(img) {
        var src = img.dataset.src;
        if (!src) return;
        var temp = new Image();
        temp.onload = function() {
            img.src = src;
            img.removeAttribute("data-src");
            img.classList.add("loaded");
        };
        temp.src = src;
    }
    var observer = null;
    if ("IntersectionObserver" in window) {
        observer = new IntersectionObserver(function(entries) {
            entries.forEach(function(entry) {
                if (entry.isIntersecting) {
                    showImage(entry.target);
                    observer.unobserve(entry.target);
                }
            });
        });
    }
    function watchImages(root) {
        root.querySelectorAll("img[data-src]").forEach(function(img) {
            if (observer && !isInViewport(img)) {
                observer.observe(img);
            } else {
                showImage(img);
            }
        });
    }
    function loadFullContent() {
        if (loaded) return;
        loaded = true;
        var holder = document.getElementById("remaining-content");
        if (holder && typeof window.fullPageContent === "string") {
            holder.innerHTML = window.fullPageContent;
            holder.classList.add("loaded");
            watchImages(holder);
        }
    }
    function init() {
        document.querySelectorAll("link[rel='stylesheet']").forEach(function(link, index) {
            if (index > 0) {
                link.setAttribute("media", "print");
                link.setAttribute("onload", "this.media='all'");
            }
        });
        watchImages(document);
        setTimeout(loadFullContent, 1000);
        ["mousemove", "click", "keydown", "touchstart", "scroll"].forEach(function(name) {
            document.addEventListener(name, loadFullContent, {once: true, passive: true});
        });
    }
    if (document.readyState !== "loading") {
        init();
    } else {
        document.addEventListener("DOMContentLoaded", init);
    }
})();
</script>
"""

PROGRESSIVE_REMAINING_PLACEHOLDER = (
    '<div class="lazy-content" id="remaining-content"><div class="loading-spinner"></div></div>'
)

PROGRESSIVE_CONTENT = """
<script>
window.fullPageContent = {{CONTENT}};
</script>
"""

NETWORK_PAYLOAD_LOADER = """
<script>
(function() {
    var filesToLoad = {{FILES}};
    var loadedFiles = {};
    var started = false;
    var chunkSize = 100000;
    function mark(label, url) {
        if (window.performance && window.performance.mark) {
            window.performance.mark(label + "-" + url.substring(0, 40));
        }
    }
    function appendScript(url) {
        return new Promise(function(resolve) {
            var script = document.createElement("script");
            script.src = url;
            script.onload = resolve;
            script.onerror = resolve;
            document.head.appendChild(script);
        });
    }
    function loadJs(url) {
        mark("start-load", url);
        return fetch(url).then(function(response) {
            if (!response.ok) throw new Error("HTTP " + response.status);
            return response.text();
        }).then(function(content) {
            var chunks = [];
            for (var i = 0; i < content.length; i += chunkSize) {
                chunks.push(content.slice(i, i + chunkSize));
            }
            return new Promise(function(resolve) {
                var index = 0;
                function next() {
                    if (index >= chunks.length) {
                        mark("execution-complete", url);
                        resolve();
                        return;
                    }
                    try {
                        new Function(chunks[index])();
                    } catch (e) {
                        console.error("Error executing chunk " + index + " of " + url, e);
                    }
                    index++;
                    setTimeout(next, 10);
                }
                next();
            });
        }).catch(function() {
            return appendScript(url);
        });
    }
    function loadCss(url) {
        return new Promise(function(resolve) {
            var link = document.createElement("link");
            link.rel = "stylesheet";
            link.href = url;
            link.onload = resolve;
            link.onerror = resolve;
            document.head.appendChild(link);
        });
    }
    function loadAll() {
        if (started) return;
        started = true;
        var css = filesToLoad.filter(function(file) { return file.type === "css"; });
        var js = filesToLoad.filter(function(file) { return file.type === "js"; });
        Promise.all(css.map(function(file) { return loadCss(file.url); })).then(function() {
            return js.reduce(function(promise, file) {
                return promise.then(function() {
                    if (loadedFiles[file.url]) return null;
                    loadedFiles[file.url] = true;
                    return loadJs(file.url);
                });
            }, Promise.resolve());
        });
    }
    if (document.readyState === "complete") {
        setTimeout(loadAll, 500);
    } else {
        window.addEventListener("load", function() { setTimeout(loadAll, 500); });
    }
    ["mousemove", "click", "keydown", "scroll", "touchstart"].forEach(function(name) {
        document.addEventListener(name, loadAll, {once: true, passive: true});
    });
    if ("requestIdleCallback" in window) {
        requestIdleCallback(loadAll, {timeout: 3000});
    } else {
        setTimeout(loadAll, 3000);
    }
})();
</script>
"""

HTML_STREAMING = """
<script>
(function() {
    var originalRender = window.requestAnimationFrame;
    window.requestAnimationFrame = function(callback) {
        return setTimeout(callback, 0);
    };
    setTimeout(function() {
        window.requestAnimationFrame = originalRender;
    }, 100);
    document.documentElement.style.display = "block";
})();
</script>
"""

RENDER_VISIBILITY = """
<script>
document.documentElement.style.visibility = "visible";
</script>
"""

LQIP_LOADER = """
<script>
(function() {
    var imgObserver = null;
    function setupObserver() {
        if ("IntersectionObserver" in window) {
            imgObserver = new IntersectionObserver(function(entries) {
                entries.forEach(function(entry) {
                    if (entry.isIntersecting) {
                        loadImage(entry.target);
                        imgObserver.unobserve(entry.target);
                    }
                });
            }, {rootMargin: "200px"});
        }
    }
    function loadImage(img) {
        var src = img.dataset.src;
        if (!src) return;
        var temp = new Image();
        temp.onload = function() {
            img.src = src;
            img.removeAttribute("data-src");
            if (img.dataset.srcset) {
                img.srcset = img.dataset.srcset;
                img.removeAttribute("data-srcset");
            }
            img.classList.add("img-loaded");
        };
        temp.onerror = function() {
            img.src = src;
            img.removeAttribute("data-src");
        };
        temp.src = src;
    }
    function addStyles() {
        var style = document.createElement("style");
        style.textContent = ".lazy-image-container{position:relative;overflow:hidden;background-color:#f0f0f0}" +
            ".lazy-image-container img{transition:opacity .3s ease}" +
            ".lazy-image-container img:not(.img-loaded){opacity:0}" +
            ".lazy-image-container .img-placeholder{position:absolute;top:0;left:0;width:100%;height:100%;" +
            "filter:blur(8px);transform:scale(1.05);transition:opacity .3s ease}" +
            ".lazy-image-container .img-loaded+.img-placeholder{opacity:0}";
        document.head.appendChild(style);
    }
    function register() {
        var images = Array.prototype.slice.call(document.querySelectorAll("img[data-src]"));
        images.forEach(function(img) {
            if (!img.parentNode || img.parentNode.classList.contains("lazy-image-container")) {
                return;
            }
            var width = img.getAttribute("width") || 0;
            var height = img.getAttribute("height") || 0;
            var container = document.createElement("div");
            container.className = "lazy-image-container";
            container.style.paddingBottom = (width && height) ? (height / width * 100) + "%" : "56.25%";
            var placeholder = document.createElement("div");
            placeholder.className = "img-placeholder";
            img.parentNode.insertBefore(container, img);
            container.appendChild(img);
            container.appendChild(placeholder);
        });
        images.forEach(function(img) {
            if (imgObserver) {
                imgObserver.observe(img);
            } else {
                loadImage(img);
            }
        });
    }
    function init() {
        addStyles();
        setupObserver();
        register();
        window.addEventListener("load", register);
        new MutationObserver(function(mutations) {
            if (mutations.some(function(m) { return m.addedNodes.length; })) register();
        }).observe(document.body, {childList: true, subtree: true});
    }
    if (document.readyState !== "loading") {
        init();
    } else {
        document.addEventListener("DOMContentLoaded", init);
    }
})();
</script>
"""

MODULE_PRELOAD_HINT = (
    "<script>window.mageSupportModulePreload=!!(document.createElement(\"link\")"
    ".relList.supports(\"modulepreload\"));</script>"
)

DEFERRED_SCRIPT_LOADER = """
<script>
document.addEventListener("DOMContentLoaded", function() {
    var trackers = document.querySelectorAll(
        "script[src*='google'], script[src*='facebook'], script[src*='analytics'], " +
        "script[src*='pixel'], script[src*='tag']"
    );
    trackers.forEach(function(script) {
        if (!script.src) return;
        var delayed = document.createElement("script");
        delayed.src = script.src;
        delayed.async = true;
        script.parentNode.removeChild(script);
        setTimeout(function() { document.head.appendChild(delayed); }, 3000);
    });
    document.querySelectorAll("script[src*='.js']").forEach(function(script) {
        if (!script.hasAttribute("critical") &&
            script.src.indexOf("jquery") === -1 &&
            script.src.indexOf("require") === -1) {
            script.setAttribute("defer", "");
        }
    });
});
</script>
"""

ANALYTICS_LOADER = """
<script>
(function() {
    window.dataLayer = window.dataLayer || [];
    function gtag() { dataLayer.push(arguments); }
    window.fbq = window.fbq || function() {
        (window._fbq = window._fbq || []).push(arguments);
    };
    var analyticsScripts = {{SCRIPTS}};
    var inlineScripts = {{INLINE}};
    var gtmId = {{GTM_ID}};
    var loaded = false;
    gtag("js", new Date());
    function loadAnalytics() {
        if (loaded) return;
        loaded = true;
        if (gtmId) {
            (function(w, d, s, l, i) {
                w[l] = w[l] || [];
                w[l].push({"gtm.start": new Date().getTime(), event: "gtm.js"});
                var f = d.getElementsByTagName(s)[0], j = d.createElement(s);
                j.async = true;
                j.src = "https://www.googletagmanager.com/gtm.js?id=" + i;
                f.parentNode.insertBefore(j, f);
            })(window, document, "script", "dataLayer", gtmId);
        }
        inlineScripts.forEach(function(code) {
            try {
                new Function(code)();
            } catch (e) {
                console.error("Error executing inline script:", e);
            }
        });
        analyticsScripts.forEach(function(src) {
            if (gtmId && src.indexOf("gtm.js") !== -1) return;
            var script = document.createElement("script");
            script.async = true;
            script.src = src;
            document.head.appendChild(script);
        });
    }
    var events = ["scroll", "click", "mousemove", "touchstart"];
    function onInteraction() {
        events.forEach(function(name) {
            document.removeEventListener(name, onInteraction, {passive: true});
        });
        setTimeout(loadAnalytics, 2000);
    }
    events.forEach(function(name) {
        document.addEventListener(name, onInteraction, {passive: true});
    });
    setTimeout(loadAnalytics, 5000);
    if ("requestIdleCallback" in window) {
        requestIdleCallback(loadAnalytics, {timeout: 5000});
    }
    var originalPush = Array.prototype.push;
    dataLayer.push = function() {
        for (var i = 0; i < arguments.length; i++) {
            originalPush.call(this, arguments[i]);
            var name = arguments[i] && arguments[i].event;
            if (name === "purchase" || name === "conversion" || name === "add_to_cart") {
                loadAnalytics();
            }
        }
    };
})();
</script>
"""

TRACKING_LOADER = """
<script>
(function() {
    var idleTime = 0;
    function resetIdleTime() { idleTime = 0; }
    ["mousemove", "keypress", "scroll", "click", "touchstart"].forEach(function(name) {
        document.addEventListener(name, resetIdleTime, {passive: true});
    });
    function loadTracking() {
        if (window.trackingLoaded) return;
        window.trackingLoaded = true;
        document.querySelectorAll("[data-tracking-src]").forEach(function(placeholder) {
            var script = document.createElement("script");
            script.src = placeholder.getAttribute("data-tracking-src");
            script.async = true;
            document.head.appendChild(script);
            placeholder.parentNode.removeChild(placeholder);
        });
    }
    setInterval(function() {
        idleTime += 1;
        if (idleTime >= 4) loadTracking();
    }, 1000);
    window.addEventListener("beforeunload", loadTracking);
    if ("requestIdleCallback" in window) {
        requestIdleCallback(loadTracking, {timeout: 5000});
    } else {
        setTimeout(loadTracking, 5000);
    }
})();
</script>
"""

LAYOUT_SHIFT_STYLE = """
<style>
[data-content-type="row"][data-appearance="contained"][data-element="main"] {
    overflow: hidden;
    box-sizing: border-box;
    contain: layout style;
}
.image-cls-fix, .pagebuilder-mobile-hidden {
    aspect-ratio: 16/9;
    max-width: 100%;
    height: auto;
    contain: strict;
}
.porto-ibanner a {
    position: relative;
    display: block;
    overflow: hidden;
    contain: layout;
}
img[alt="WhatsApp Chat"] {
    width: 60px !important;
    height: 60px !important;
}
</style>
"""

ABOVE_THE_FOLD_LOADER = """
<script>
(function() {
    var criticalCssUrl = {{CSS_URL}};
    if (criticalCssUrl) {
        var xhr = new XMLHttpRequest();
        xhr.open("GET", criticalCssUrl, true);
        xhr.onload = function() {
            if (xhr.status >= 200 && xhr.status < 400) {
                var style = document.createElement("style");
                style.textContent = xhr.responseText;
                document.head.appendChild(style);
            }
        };
        xhr.send();
    }
    function isInViewport(el) {
        var rect = el.getBoundingClientRect();
        return rect.top <= (window.innerHeight || document.documentElement.clientHeight) &&
            rect.left <= (window.innerWidth || document.documentElement.clientWidth);
    }
    function showImage(img) {
        img.src = img.dataset.lazySrc;
        if (img.dataset.lazySrcset) img.srcset = img.dataset.lazySrcset;
        img.removeAttribute("data-lazy-src");
        img.removeAttribute("data-lazy-srcset");
    }
    function showElement(el) {
        el.innerHTML = el.dataset.lazyHtml;
        el.removeAttribute("data-lazy-html");
    }
    function lazyLoad(selector, show) {
        var pending = Array.prototype.slice.call(document.querySelectorAll(selector));
        if ("IntersectionObserver" in window) {
            var observer = new IntersectionObserver(function(entries) {
                entries.forEach(function(entry) {
                    if (entry.isIntersecting) {
                        show(entry.target);
                        observer.unobserve(entry.target);
                    }
                });
            });
            pending.forEach(function(el) { observer.observe(el); });
            return;
        }
        var busy = false;
        function check() {
            if (busy) return;
            busy = true;
            setTimeout(function() {
                pending = pending.filter(function(el) {
                    if (isInViewport(el)) {
                        show(el);
                        return false;
                    }
                    return true;
                });
                if (!pending.length) {
                    document.removeEventListener("scroll", check);
                    window.removeEventListener("resize", check);
                }
                busy = false;
            }, 200);
        }
        document.addEventListener("scroll", check);
        window.addEventListener("resize", check);
        check();
    }
    document.addEventListener("DOMContentLoaded", function() {
        lazyLoad("img[data-lazy-src]", showImage);
        lazyLoad("[data-lazy-html]", showElement);
    });
})();
</script>
"""

PRIORITY_LOADER = """
<script>
(function() {
    var priorities = {critical: [], high: [], medium: [], low: []};
    function isInViewport(el) {
        var rect = el.getBoundingClientRect();
        return rect.top <= (window.innerHeight || document.documentElement.clientHeight) &&
            rect.left <= (window.innerWidth || document.documentElement.clientWidth);
    }
    function classify() {
        document.querySelectorAll("link[rel='stylesheet']").forEach(function(link) {
            (priorities.critical.length === 0 ? priorities.critical : priorities.medium).push(link);
        });
        document.querySelectorAll("script[src]").forEach(function(script) {
            var src = script.src;
            if (src.indexOf("jquery") !== -1 || src.indexOf("require") !== -1) {
                priorities.high.push(script);
            } else if (/google|facebook|analytics|pixel/.test(src)) {
                priorities.low.push(script);
            } else {
                priorities.medium.push(script);
            }
        });
        document.querySelectorAll("img").forEach(function(img) {
            if (isInViewport(img) || img.classList.contains("logo") ||
                img.closest("[data-content-type='banner']")) {
                priorities.high.push(img);
            } else {
                priorities.medium.push(img);
            }
        });
    }
    function load(resource) {
        if (resource.dataset.priorityLoaded) return;
        resource.dataset.priorityLoaded = "1";
        if (resource.tagName === "LINK") {
            resource.media = "all";
        } else if (resource.tagName === "SCRIPT") {
            var script = document.createElement("script");
            script.src = resource.src;
            script.async = true;
            resource.parentNode.replaceChild(script, resource);
        } else if (resource.tagName === "IMG" && resource.dataset.lazySrc) {
            resource.src = resource.dataset.lazySrc;
            if (resource.dataset.lazySrcset) resource.srcset = resource.dataset.lazySrcset;
        }
    }
    function start() {
        classify();
        priorities.critical.forEach(load);
        setTimeout(function() { priorities.high.forEach(load); }, 100);
        setTimeout(function() { priorities.medium.forEach(load); }, 500);
        setTimeout(function() { priorities.low.forEach(load); }, 3000);
    }
    if (document.readyState !== "loading") {
        start();
    } else {
        document.addEventListener("DOMContentLoaded", start);
    }
    window.addEventListener("scroll", function() {
        priorities.medium.forEach(load);
    }, {once: true, passive: true});
    ["mousedown", "keydown", "touchstart"].forEach(function(name) {
        window.addEventListener(name, function() {
            priorities.medium.forEach(load);
            priorities.low.forEach(load);
        }, {once: true, passive: true});
    });
})();
</script>
"""
