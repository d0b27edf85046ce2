from __future__ import annotations

import logging
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import click
import stripe
from flask import (
    Flask,
    abort,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    send_file,
    session,
    url_for,
)

from printshop import auth
from printshop.cart import Cart, CartStore, InvalidQuantity
from printshop.catalog import (
    DEFAULT_PAPER,
    DEFAULT_SIZE,
    PaperType,
    PrintSize,
    calculate_price,
    format_price,
    get_paper,
    get_size,
    list_papers,
    list_sizes,
    paper_surcharge_label,
    title_from_key,
)
from printshop.checkout import (
    CheckoutError,
    EmptyCart,
    WebhookError,
    create_checkout_session,
    handle_event,
    parse_webhook,
    verify_paid_session,
)
from printshop.config import Settings, load_settings, setup_logging
from printshop.gallery import GalleryError, InvalidKey, PhotoNotFound, PhotoStore, UnsupportedFile
from printshop.persistence import SessionSlot

logger = logging.getLogger(__name__)

PAID_SESSION_KEY = "paid_session_id"


def _option_id(value: Any) -> str:
    """Catalog options arrive either as ids or as the full option objects."""
    if isinstance(value, dict):
        value = value.get("id")
    return str(value or "").strip()


def _parse_quantity(value: Any) -> int:
    if isinstance(value, bool):
        raise InvalidQuantity(f"Invalid quantity: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidQuantity(f"Invalid quantity: {value!r}")


def _resolve_options(size_id: str, paper_id: str) -> Tuple[PrintSize, PaperType]:
    size = get_size(size_id)
    paper = get_paper(paper_id)
    if size is None or paper is None:
        raise LookupError("Unknown size or paper")
    return size, paper


# -------------------------
# App factory
# -------------------------
def create_app(settings: Optional[Settings] = None, **overrides) -> Flask:
    settings = settings or load_settings()
    if overrides:
        settings = settings.with_overrides(**overrides)

    setup_logging(settings.log_level)

    app = Flask(__name__)
    app.secret_key = settings.secret_key
    app.config["SETTINGS"] = settings
    app.config["MAX_CONTENT_LENGTH"] = settings.max_upload_mb * 1024 * 1024
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(days=7)
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"
    app.config["SESSION_COOKIE_SECURE"] = settings.site_url.startswith("https://")

    stripe.api_key = settings.stripe_secret_key
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set; checkout will fail until it is configured.")
    if not settings.admin_password_hash:
        logger.warning("ADMIN_PASSWORD_HASH is not set; admin login is disabled.")

    store = PhotoStore(
        settings.gallery_dir,
        public_base_url=settings.public_url,
        prefix=settings.gallery_prefix,
    )
    app.extensions["photo_store"] = store

    app.add_template_filter(format_price, name="price")
    app.add_template_filter(title_from_key, name="photo_title")
    app.add_template_global(store.thumbnail_url, name="thumb_url")
    app.add_template_global(paper_surcharge_label, name="surcharge")

    # -------------------------
    # Cart store (one per request, over the session cookie)
    # -------------------------
    def get_store() -> CartStore:
        if "cart_store" not in g:
            cart_store = CartStore(SessionSlot(session))

            def on_change(cart: Cart) -> None:
                g.cart = cart

            g.cart_store = cart_store
            g.cart_dispose = cart_store.subscribe(on_change)
            g.cart = cart_store.read()
        return g.cart_store

    @app.teardown_request
    def dispose_cart_store(exc: Optional[BaseException]) -> None:
        dispose = g.pop("cart_dispose", None)
        if dispose is not None:
            dispose()

    def cart_payload(cart: Cart) -> Dict[str, Any]:
        return {"ok": True, "count": cart.item_count, "total": cart.total, "cart": cart.to_dict()}

    def cart_error(message: str, status: int = 400):
        return jsonify({"ok": False, "error": message}), status

    # -------------------------
    # Cache headers
    # -------------------------
    @app.after_request
    def add_no_cache_headers(resp):
        if request.endpoint in ("static", "media"):
            return resp
        resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
        resp.headers["Pragma"] = "no-cache"
        resp.headers["Expires"] = "0"
        return resp

    # -------------------------
    # Globals for templates
    # -------------------------
    @app.context_processor
    def inject_globals():
        get_store()
        cart = g.get("cart") or Cart.empty()
        return dict(
            cart=cart,
            cart_count=cart.item_count,
            cart_total=format_price(cart.total),
            is_admin=auth.is_admin(),
        )

    # -------------------------
    # Media serving (gallery images)
    # -------------------------
    @app.get("/media/<path:key>")
    def media(key: str):
        try:
            return send_file(store.open_path(key))
        except GalleryError:
            return send_file(
                os.path.join(app.static_folder, "img", "placeholder.svg"),
                mimetype="image/svg+xml",
            )

    # -------------------------
    # Gallery
    # -------------------------
    @app.get("/")
    def home():
        photos = [{"key": k, "title": title_from_key(k)} for k in store.list_keys()]
        return render_template("gallery.html", title="Gallery", photos=photos)

    @app.get("/photos/<path:key>")
    def photo(key: str):
        try:
            store.open_path(key)
        except GalleryError:
            abort(404)

        price_table = {
            s.id: {p.id: calculate_price(s, p) for p in list_papers()} for s in list_sizes()
        }
        return render_template(
            "photo.html",
            title=title_from_key(key),
            key=key,
            image_url=store.public_url(key),
            sizes=list_sizes(),
            papers=list_papers(),
            default_size=DEFAULT_SIZE,
            default_paper=DEFAULT_PAPER,
            price_table=price_table,
        )

    # -------------------------
    # Cart pages
    # -------------------------
    @app.get("/cart")
    def cart_page():
        return render_template("cart.html", title="Cart", cart=get_store().read())

    @app.post("/cart/add")
    def cart_add_form():
        key = (request.form.get("productId") or "").strip()
        try:
            size, paper = _resolve_options(request.form.get("size", ""), request.form.get("paper", ""))
            quantity = _parse_quantity(request.form.get("quantity", 1))
            store.open_path(key)
            get_store().add(key, title_from_key(key), store.public_url(key), size, paper, quantity)
        except (LookupError, InvalidQuantity, GalleryError) as e:
            flash(str(e), "error")
            if key:
                return redirect(url_for("photo", key=key))
            return redirect(url_for("home"))
        return redirect(url_for("cart_page"))

    @app.post("/cart/update")
    def cart_update_form():
        try:
            quantity = _parse_quantity(request.form.get("quantity", 0))
        except InvalidQuantity as e:
            flash(str(e), "error")
            return redirect(url_for("cart_page"))
        get_store().set_quantity((request.form.get("id") or "").strip(), quantity)
        return redirect(url_for("cart_page"))

    @app.post("/cart/remove")
    def cart_remove_form():
        get_store().remove((request.form.get("id") or "").strip())
        return redirect(url_for("cart_page"))

    # -------------------------
    # Cart API
    # -------------------------
    @app.get("/api/cart")
    def api_cart():
        return jsonify(cart_payload(get_store().read()))

    @app.post("/api/cart/add")
    def api_cart_add():
        payload = request.get_json(silent=True) or {}
        product_id = str(payload.get("productId") or "").strip()
        if not product_id:
            return cart_error("Invalid payload")

        try:
            size, paper = _resolve_options(_option_id(payload.get("size")), _option_id(payload.get("paper")))
        except LookupError as e:
            return cart_error(str(e))

        try:
            quantity = _parse_quantity(payload.get("quantity", 1))
            title = str(payload.get("title") or "").strip() or title_from_key(product_id)
            image_url = str(payload.get("imageUrl") or "").strip() or store.public_url(product_id)
            cart = get_store().add(product_id, title, image_url, size, paper, quantity)
        except InvalidQuantity as e:
            return cart_error(str(e))
        return jsonify(cart_payload(cart))

    @app.post("/api/cart/update")
    def api_cart_update():
        payload = request.get_json(silent=True) or {}
        key = str(payload.get("id") or "").strip()
        if not key:
            return cart_error("Invalid payload")
        try:
            quantity = _parse_quantity(payload.get("quantity"))
        except InvalidQuantity as e:
            return cart_error(str(e))
        return jsonify(cart_payload(get_store().set_quantity(key, quantity)))

    @app.post("/api/cart/remove")
    def api_cart_remove():
        payload = request.get_json(silent=True) or {}
        key = str(payload.get("id") or "").strip()
        if not key:
            return cart_error("Invalid payload")
        return jsonify(cart_payload(get_store().remove(key)))

    @app.post("/api/cart/clear")
    def api_cart_clear():
        return jsonify(cart_payload(get_store().clear()))

    # -------------------------
    # Checkout
    # -------------------------
    @app.get("/checkout")
    def checkout_page():
        return render_template("checkout.html", title="Checkout", cart=get_store().read())

    @app.post("/api/checkout")
    def api_checkout():
        items = get_store().read().items
        try:
            cs = create_checkout_session(items, settings.site_url, settings.currency)
        except EmptyCart as e:
            return jsonify({"error": str(e)}), 400
        except CheckoutError as e:
            return jsonify({"error": str(e)}), 502
        return jsonify({"sessionId": cs.id, "url": cs.url})

    @app.post("/checkout")
    def checkout():
        """Create Stripe Checkout Session and redirect to payment page."""
        items = get_store().read().items
        try:
            cs = create_checkout_session(items, settings.site_url, settings.currency)
        except EmptyCart:
            return redirect(url_for("cart_page"))
        except CheckoutError:
            flash("We could not start the payment. Your cart is unchanged, please try again.", "error")
            return redirect(url_for("checkout_page"))
        return redirect(cs.url, code=303)

    @app.get("/success")
    def checkout_success():
        """Verifies the Stripe payment and empties the cart once per paid session."""
        session_id = (request.args.get("session_id") or "").strip()
        if not session_id:
            return render_template("success.html", title="Order Successful", paid=False, session_id=None)

        if session.get(PAID_SESSION_KEY) != session_id:
            try:
                paid = verify_paid_session(session_id)
            except CheckoutError:
                abort(400, "Invalid session_id")
            if not paid:
                return render_template(
                    "success.html", title="Payment pending", paid=False, session_id=session_id
                )
            get_store().clear()
            session[PAID_SESSION_KEY] = session_id

        return render_template("success.html", title="Order Successful", paid=True, session_id=session_id)

    @app.post("/api/webhook")
    def webhook():
        try:
            event = parse_webhook(
                request.get_data(),
                request.headers.get("Stripe-Signature"),
                settings.stripe_webhook_secret,
            )
        except WebhookError as e:
            return jsonify({"error": str(e)}), 400
        handle_event(event)
        return jsonify({"received": True})

    # -------------------------
    # Admin
    # -------------------------
    @app.route("/admin/login", methods=["GET", "POST"])
    def admin_login():
        if request.method == "POST":
            password = request.form.get("password") or ""
            if auth.verify_password(password, settings.admin_password_hash):
                auth.login()
                logger.info("Admin logged in from %s", request.remote_addr)
                return redirect(url_for("admin"))
            logger.warning("Failed admin login from %s", request.remote_addr)
            return render_template("admin_login.html", title="Admin", login_error="Invalid password."), 401
        if auth.is_admin():
            return redirect(url_for("admin"))
        return render_template("admin_login.html", title="Admin", login_error=None)

    @app.post("/admin/logout")
    def admin_logout():
        auth.logout()
        return redirect(url_for("admin_login"))

    @app.get("/admin")
    @auth.admin_required
    def admin():
        return render_template("admin.html", title="Admin Dashboard", photos=store.list_photos())

    @app.get("/api/admin/photos")
    @auth.admin_required
    def admin_photos():
        photos: List[Dict[str, Any]] = [p.to_dict() for p in store.list_photos()]
        return jsonify({"photos": photos})

    @app.delete("/api/admin/photos")
    @auth.admin_required
    def admin_delete_photo():
        payload = request.get_json(silent=True) or {}
        key = str(payload.get("key") or "").strip()
        if not key:
            return jsonify({"error": "Photo key is required"}), 400
        try:
            store.delete(key)
        except InvalidKey as e:
            return jsonify({"error": str(e)}), 400
        except PhotoNotFound:
            return jsonify({"error": "Photo not found"}), 404
        return jsonify({"success": True})

    @app.post("/api/admin/upload")
    @auth.admin_required
    def admin_upload():
        f = request.files.get("file")
        if f is None or not f.filename:
            return jsonify({"error": "No file provided"}), 400
        try:
            saved = store.save(f.stream, f.filename)
        except UnsupportedFile as e:
            return jsonify({"error": str(e)}), 400
        except OSError:
            logger.exception("Upload failed for %s", f.filename)
            return jsonify({"error": "Failed to upload file"}), 500
        return jsonify({"success": True, "key": saved.key, "url": saved.url})

    # -------------------------
    # CLI
    # -------------------------
    @app.cli.command("hash-password")
    @click.argument("password")
    def hash_password_command(password: str) -> None:
        """Print the ADMIN_PASSWORD_HASH value for PASSWORD."""
        click.echo(auth.hash_password(password))

    return app
