"""
Streamlit UI for the storefront.
- Product list with "already in cart" counts
- Cart review (quantities, removal, per-seller totals)
- Checkout hand-off to the payment gateway
- Gateway return pages (success / failure) with manual verification
- Order history
"""

from decimal import Decimal

import streamlit as st

from storefront.core.config import settings
from storefront.core.errors import EmptyCartError, InvalidQuantityError, StorefrontError
from storefront.core.gateway import transaction_ref_from_return
from storefront.models.cart import CartCandidate, DisplayMeta
from storefront.models.checkout import CheckoutPhase
from storefront.utils.health_utils import check_backend, check_database
from storefront.utils.session_utils import (
    build_session,
    forget_checkout_owner,
    remember_checkout_owner,
    resume_checkout_session,
)

CURRENCY = settings.currency

# -------------------------------------------------
# Page config
# -------------------------------------------------
st.set_page_config(
    page_title="Storefront",
    page_icon="🛒",
    layout="wide",
)

# -------------------------------------------------
# Session state
# -------------------------------------------------
if "session_token" not in st.session_state:
    st.session_state.session_token = settings.session_token or ""

if "processing" not in st.session_state:
    st.session_state.processing = False

if "handled_return" not in st.session_state:
    st.session_state.handled_return = None

if "checkout_result" not in st.session_state:
    st.session_state.checkout_result = None

params = st.query_params
page = params.get("page", "shop")

# The gateway return opens a fresh session; pick up the shopper who started the payment
if page in ("payment_success", "payment_failed"):
    current = st.session_state.get("storefront")
    resumed = resume_checkout_session(transaction_ref_from_return(params.to_dict()), current=current)
    if resumed is not None and resumed is not current:
        st.session_state.storefront = resumed
        st.session_state.session_token = resumed.session_token or ""

with st.sidebar:
    token = st.text_input("Session token", value=st.session_state.session_token, type="password")
    if token != st.session_state.session_token:
        st.session_state.session_token = token
        st.session_state.pop("storefront", None)

if "storefront" not in st.session_state:
    token = st.session_state.session_token or None
    st.session_state.storefront = build_session(session_token=token, shopper_id=token)

storefront = st.session_state.storefront
cart = storefront.cart
checkout = storefront.checkout


def money(amount) -> str:
    return f"{CURRENCY} {amount}"


def show_messages(result):
    for message in result.messages_to_user:
        if result.error:
            st.error(message)
        else:
            st.info(message)
    if result.error and result.retryable:
        st.warning(f"{result.error} - you can retry without losing your cart.")


# -------------------------------------------------
# Header
# -------------------------------------------------
st.markdown("<h1 style='color:#1f77b4'>🛒 Storefront</h1>", unsafe_allow_html=True)
st.caption(f"{cart.total_items} item(s) in cart · Total {money(cart.total_price)}")


# =================================================
# GATEWAY RETURN: SUCCESS
# =================================================
if page == "payment_success":
    st.subheader("✅ Payment return")
    encoded = params.get("data", "")

    if st.session_state.handled_return != encoded:
        st.session_state.handled_return = encoded
        with st.spinner("Creating your order..."):
            st.session_state.checkout_result = checkout.handle_success_return(encoded)

    result = st.session_state.checkout_result
    if result is not None:
        show_messages(result)

        if result.phase == CheckoutPhase.ORDER_CREATED and result.order:
            st.success(f"Order {result.order.id} placed · {money(result.order.amount)}")
            st.dataframe(
                [{"Product": p.product_id, "Qty": p.quantity, "Price": money(p.price)}
                 for p in result.order.products],
                width="stretch",
                hide_index=True,
            )
            forget_checkout_owner(storefront, result.transaction_ref or result.order.transaction_id)
        else:
            pending = checkout.pending()
            st.write("Transaction:", result.transaction_ref or (pending and pending.transaction_ref))
            st.write("Status:", result.payment_status or "UNKNOWN")

            if st.button("🔄 Verify Status", disabled=st.session_state.processing):
                st.session_state.processing = True
                with st.spinner("Verifying payment..."):
                    st.session_state.checkout_result = checkout.verify_status(
                        transaction_ref=result.transaction_ref,
                        amount=result.amount,
                        product_code=result.product_code,
                    )
                st.session_state.processing = False
                st.rerun()

    st.link_button("Back to cart", f"{settings.frontend_url}/?page=cart")

# =================================================
# GATEWAY RETURN: FAILURE
# =================================================
elif page == "payment_failed":
    st.subheader("❌ Payment not completed")
    result = checkout.handle_failure_return(params.to_dict())
    forget_checkout_owner(storefront, result.transaction_ref)
    failure = result.gateway_failure
    if failure:
        st.write("Transaction:", failure.transaction_ref or "-")
        st.write("Status:", failure.status or "-")
        if failure.total_amount is not None:
            st.write("Amount:", money(failure.total_amount))
    show_messages(result)
    st.info("Your cart is unchanged. You can retry checkout.")
    st.link_button("🔁 Retry payment", f"{settings.frontend_url}/?page=cart")

# =================================================
# CART / CHECKOUT
# =================================================
elif page == "cart":
    st.subheader("🛒 Your Cart")

    if cart.is_empty():
        st.info("Your cart is empty")
    else:
        for seller_id, lines in cart.get_items_by_seller().items():
            st.markdown(f"**Seller {seller_id}** · {money(cart.get_total_price_by_seller(seller_id))}")
            for line in lines:
                col1, col2, col3 = st.columns([4, 2, 1])
                with col1:
                    label = line.display_meta.name
                    if line.discount_percent:
                        label += f" (-{line.discount_percent}%)"
                    st.write(label, "·", money(line.effective_unit_price))
                with col2:
                    qty = st.number_input(
                        "Qty", min_value=0, value=line.quantity, key=f"qty-{line.line_id}"
                    )
                    if qty != line.quantity:
                        cart.update_quantity(line.line_id, int(qty))
                        st.rerun()
                with col3:
                    if st.button("🗑️", key=f"rm-{line.line_id}"):
                        cart.remove_item(line.line_id)
                        st.rerun()

        st.markdown(f"### 💰 Total: {money(cart.total_price)}")

        col1, col2 = st.columns(2)
        with col1:
            if st.button("Clear cart", disabled=st.session_state.processing):
                cart.clear_cart()
                st.rerun()
        with col2:
            if st.button("✅ Checkout", disabled=st.session_state.processing):
                st.session_state.processing = True
                try:
                    with st.spinner("Initiating payment..."):
                        result = checkout.begin_checkout()
                except EmptyCartError as e:
                    result = None
                    st.error(str(e))
                finally:
                    st.session_state.processing = False

                if result is not None:
                    if result.phase == CheckoutPhase.LOGIN_REQUIRED:
                        st.error("Please login to purchase")
                        st.link_button("Login", f"{settings.frontend_url}{result.login_url}")
                    elif result.phase == CheckoutPhase.REDIRECTED:
                        st.success("Redirecting to payment...")
                        remember_checkout_owner(storefront, result.transaction_ref)
                        st.link_button("Continue to payment", result.redirect_url)
                    else:
                        show_messages(result)

    pending = checkout.pending()
    if pending:
        st.caption(
            f"Unfinished payment {pending.transaction_ref} started "
            f"{pending.created_at:%Y-%m-%d %H:%M}"
        )
        if st.button("Abandon unfinished payment"):
            checkout.abandon()
            st.rerun()

# =================================================
# ORDERS
# =================================================
elif page == "orders":
    st.subheader("📦 Your Orders")
    try:
        orders = storefront.backend.get_user_orders()
    except StorefrontError as e:
        orders = []
        st.error(str(e))

    for order in orders:
        col1, col2 = st.columns([4, 1])
        with col1:
            st.write(f"{order.id} · {order.status} · {money(order.amount)}")
        with col2:
            if order.status == "PLACED" and st.button("Cancel", key=f"cancel-{order.id}"):
                try:
                    storefront.backend.cancel_order(order.id)
                    st.rerun()
                except StorefrontError as e:
                    st.error(str(e))

# =================================================
# SHOP
# =================================================
else:
    st.subheader("🛍️ Products")
    try:
        products = storefront.backend.get_products()
    except StorefrontError as e:
        products = []
        st.error(str(e))

    for product in products:
        col1, col2, col3 = st.columns([4, 1, 1])
        with col1:
            st.write(f"**{product.name}** · {product.brand or ''} · {money(product.price)}")
            in_cart = cart.get_item_quantity(product.id, product.seller_id)
            if in_cart:
                st.caption(f"Already {in_cart} in cart")
        with col2:
            qty = st.number_input("Qty", min_value=1, value=1, key=f"add-qty-{product.id}")
        with col3:
            if st.button("Add", key=f"add-{product.id}"):
                try:
                    cart.add_item(CartCandidate(
                        product_id=product.id,
                        seller_id=product.seller_id,
                        quantity=int(qty),
                        unit_price=Decimal(product.price),
                        discount_percent=product.discount,
                        category=product.category,
                        brand=product.brand,
                        display_meta=DisplayMeta(
                            name=product.name,
                            image=product.image,
                            category=product.category,
                            brand=product.brand,
                            rating=product.rating,
                        ),
                    ))
                    st.rerun()
                except InvalidQuantityError as e:
                    st.error(str(e))

    st.markdown("---")
    with st.expander("⚙️ System Health"):
        st.write("Database:", "✅" if check_database() else "❌")
        st.write("Backend:", "✅" if check_backend(storefront.backend) else "❌")

st.sidebar.markdown("[Shop](?page=shop) · [Cart](?page=cart) · [Orders](?page=orders)")
