import copy
import logging
from datetime import date

import streamlit as st

import config
from email_preview import build_reminder_email, clipboard_text, simulate_send
from gemini_service import ChatSession
from importer import SOURCE_AI, ai_available, import_from_text, import_from_upload
from patent_processing import STATUSES, TYPES
from portfolio import (
    SAMPLE_PATENTS,
    STATUS_ALL,
    add_patents,
    apply_term_fields,
    delete_patent,
    export_file_name,
    export_to_xlsx,
    filter_patents,
    get_patent,
    normalize_record,
    portfolio_stats,
    upcoming_annuities,
    update_patent,
)


logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s - %(levelname)s - %(message)s")

st.set_page_config(page_title=f"{config.APP_TITLE} - 專利組合管理", page_icon="💼", layout="wide")

STATUS_LABELS = {"Active": "存續中", "Expired": "已屆期", "Pending": "審查中"}
TYPE_LABELS = {"Invention": "發明", "Utility": "新型", "Design": "設計"}

TABLE_COLUMNS = [
    ("name", "專利名稱"),
    ("patentee", "專利權人"),
    ("country", "國家"),
    ("status", "狀態"),
    ("type", "類型"),
    ("appNumber", "申請號"),
    ("pubNumber", "公告號"),
    ("annuityDate", "年費到期日"),
    ("annuityYear", "年次"),
]

today = date.today()

# session_state init
if "patents" not in st.session_state:
    st.session_state.patents = copy.deepcopy(SAMPLE_PATENTS)
if "view_mode" not in st.session_state:
    st.session_state.view_mode = "dashboard"
if "chat_session" not in st.session_state:
    st.session_state.chat_session = ChatSession()
if "chat_messages" not in st.session_state:
    st.session_state.chat_messages = []
if "flash" not in st.session_state:
    st.session_state.flash = None

patents = st.session_state.patents
stats = portfolio_stats(patents, now=today, window_days=config.ANNUITY_ALERT_DAYS)


def _set_patents(new_patents):
    st.session_state.patents = new_patents


def _flash(msg: str) -> None:
    # shown once after the next rerun
    st.session_state.flash = msg


def _table_rows(items):
    return [
        {
            label: (STATUS_LABELS.get(p.get(key), p.get(key)) if key == "status"
                    else TYPE_LABELS.get(p.get(key), p.get(key)) if key == "type"
                    else p.get(key, ""))
            for key, label in TABLE_COLUMNS
        }
        for p in items
    ]


# ===== Sidebar =====
with st.sidebar:
    st.title(f"💼 {config.APP_TITLE}")
    st.caption(f"{config.APP_VERSION} · Stable")

    st.session_state.view_mode = st.radio(
        "導覽",
        options=["dashboard", "list"],
        format_func=lambda v: "總覽儀表板" if v == "dashboard" else "專利清單",
        index=0 if st.session_state.view_mode == "dashboard" else 1,
    )

    alert_count = stats["upcoming_annuities"]
    st.markdown(f"🔔 期限提醒 **{alert_count}**" if alert_count else "🔔 期限提醒")

    st.divider()
    st.caption("系統摘要")
    c1, c2 = st.columns(2)
    c1.metric("專利總數", stats["total"])
    c2.metric("存續率", f"{stats['survival_rate']}%")

    st.divider()
    chat_open = st.toggle("AI 智慧助手", value=False, help="有任何法律問題？即刻詢問專利 AI。")


# ===== Header =====
head_l, head_r = st.columns([3, 1])
with head_l:
    search_term = st.text_input("搜尋", placeholder="搜尋專利名稱、號碼、國家或權人...", label_visibility="collapsed")

if st.session_state.flash:
    st.success(st.session_state.flash)
    st.session_state.flash = None

is_dashboard = st.session_state.view_mode == "dashboard"
st.header("智慧管理儀表板" if is_dashboard else "專利組合清單")
st.caption("即時監控專利分佈、法律狀態與屆期風險" if is_dashboard else "管理、編輯並追蹤您的所有智慧財產權案件")

status_filter = STATUS_ALL
if not is_dashboard:
    status_filter = st.radio(
        "狀態篩選",
        options=[STATUS_ALL, "Active", "Expired"],
        format_func=lambda v: "全部" if v == STATUS_ALL else STATUS_LABELS[v],
        horizontal=True,
        label_visibility="collapsed",
    )

filtered = filter_patents(patents, search_term, status_filter)

with head_r:
    st.download_button(
        label="📥 匯出清單",
        data=export_to_xlsx(filtered),
        file_name=export_file_name(today),
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        use_container_width=True,
    )


# ===== 新增專利 (import) =====
with st.expander("📤 新增專利", expanded=False):
    use_ai = st.checkbox("使用 AI 解析", value=ai_available(), disabled=not ai_available(),
                         help=None if ai_available() else "未設定 API Key，將使用規則式解析。")
    tab_text, tab_file = st.tabs(["貼上文字", "上傳檔案"])

    with tab_text:
        pasted = st.text_area("專利文件內容", height=200, key="import_text")
        if st.button("解析並新增", key="import_text_btn", disabled=not pasted.strip()):
            with st.spinner("解析中..."):
                record, source = import_from_text(pasted, now=today, use_ai=use_ai)
            _set_patents(add_patents(st.session_state.patents, record))
            st.session_state.view_mode = "list"
            _flash(f"已新增「{record['name']}」({'AI 解析' if source == SOURCE_AI else '規則式解析，請確認欄位'})")
            st.rerun()

    with tab_file:
        uploaded = st.file_uploader("PDF / Excel / TXT", type=["pdf", "xlsx", "txt"], accept_multiple_files=False)
        if uploaded is not None and st.button("匯入檔案", key="import_file_btn"):
            try:
                with st.spinner("匯入中..."):
                    records = import_from_upload(uploaded.name, uploaded.getvalue(), now=today, use_ai=use_ai)
                _set_patents(add_patents(st.session_state.patents, records))
                st.session_state.view_mode = "list"
                _flash(f"已匯入 {len(records)} 筆專利")
                st.rerun()
            except Exception as e:
                st.error(f"匯入失敗：{e}")


# ===== Dashboard =====
if is_dashboard:
    m1, m2, m3, m4 = st.columns(4)
    m1.metric("專利總數", stats["total"])
    m2.metric("存續中", stats["by_status"].get("Active", 0))
    m3.metric("已屆期", stats["by_status"].get("Expired", 0))
    m4.metric(f"{config.ANNUITY_ALERT_DAYS} 天內年費到期", stats["upcoming_annuities"])

    g1, g2, g3 = st.columns(3)
    with g1:
        st.subheader("法律狀態")
        st.bar_chart([{"狀態": STATUS_LABELS.get(k, k), "件數": v} for k, v in stats["by_status"].items()], x="狀態", y="件數")
    with g2:
        st.subheader("專利類型")
        st.bar_chart([{"類型": TYPE_LABELS.get(k, k), "件數": v} for k, v in stats["by_type"].items()], x="類型", y="件數")
    with g3:
        st.subheader("申請國家")
        st.bar_chart([{"國家": k, "件數": v} for k, v in stats["by_country"].items()], x="國家", y="件數")

    st.subheader("近期年費到期")
    due = upcoming_annuities(patents, now=today, window_days=config.ANNUITY_ALERT_DAYS)
    if due:
        st.dataframe(_table_rows(due), use_container_width=True, hide_index=True)
    else:
        st.info("目前沒有即將到期的年費。")


# ===== List =====
else:
    if not filtered:
        st.info("沒有符合條件的專利。")
    else:
        st.dataframe(_table_rows(filtered), use_container_width=True, hide_index=True)

        selected_id = st.selectbox(
            "選擇專利",
            options=[p["id"] for p in filtered],
            format_func=lambda pid: f"{get_patent(filtered, pid)['name']} ({get_patent(filtered, pid)['appNumber'] or '-'})",
        )
        selected = get_patent(patents, selected_id)

        tab_edit, tab_mail, tab_delete = st.tabs(["✏️ 編輯", "✉️ 通知信件", "🗑️ 刪除"])

        with tab_edit:
            with st.form(f"edit_{selected_id}"):
                e1, e2 = st.columns(2)
                name = e1.text_input("專利名稱", value=selected["name"])
                patentee = e2.text_input("專利權人", value=selected["patentee"])
                country = e1.text_input("申請國家", value=selected["country"])
                status = e2.selectbox("狀態", STATUSES, index=STATUSES.index(selected["status"]), format_func=STATUS_LABELS.get)
                ptype = e1.selectbox("類型", TYPES, index=TYPES.index(selected["type"]), format_func=TYPE_LABELS.get)
                app_number = e2.text_input("申請號", value=selected["appNumber"])
                pub_number = e1.text_input("公告號", value=selected["pubNumber"])
                app_date = e2.text_input("申請日 (YYYY-MM-DD)", value=selected["appDate"])
                pub_date = e1.text_input("公告日 (YYYY-MM-DD)", value=selected["pubDate"])
                emails = e2.text_input("通知信箱 (以逗號分隔)", value=selected.get("notificationEmails", ""))
                recompute = st.checkbox("依申請日重新計算期間與年費", value=True)
                if st.form_submit_button("儲存"):
                    updated = dict(selected)
                    updated.update({
                        "name": name, "patentee": patentee, "country": country, "status": status,
                        "type": ptype, "appNumber": app_number, "pubNumber": pub_number,
                        "appDate": app_date, "pubDate": pub_date, "notificationEmails": emails,
                    })
                    updated = normalize_record(updated)
                    if recompute:
                        updated = apply_term_fields(updated, today)
                    _set_patents(update_patent(st.session_state.patents, updated))
                    _flash("已儲存變更")
                    st.rerun()

        with tab_mail:
            email = build_reminder_email(selected, now=today)
            st.markdown(
                f"**寄件者：** {email['sender']}  \n"
                f"**收件者：** {email['recipients_label']}  \n"
                f"**日期：** {email['date']}  \n"
                f"**主旨：** {email['subject']}"
            )
            st.code(email["body"], language=None)
            st.caption("複製內容")
            st.code(clipboard_text(email), language=None)
            if st.button("📨 模擬發送", key=f"send_{selected_id}"):
                _flash(simulate_send(selected))
                st.rerun()

        with tab_delete:
            st.warning(f"確定要刪除「{selected['name']}」嗎？此操作無法復原。")
            if st.button("確認刪除", key=f"delete_{selected_id}", type="primary"):
                _set_patents(delete_patent(st.session_state.patents, selected_id))
                _flash(f"已刪除「{selected['name']}」")
                st.rerun()


# ===== AI chat =====
if chat_open:
    st.divider()
    st.subheader("🤖 AI 智慧助手")
    if not ai_available():
        st.caption("未設定 API Key，AI 回覆將無法使用。")
    for msg in st.session_state.chat_messages:
        with st.chat_message(msg["role"]):
            st.markdown(msg["content"])

    prompt = st.chat_input("詢問專利相關問題...")
    if prompt:
        st.session_state.chat_messages.append({"role": "user", "content": prompt})
        with st.chat_message("user"):
            st.markdown(prompt)
        with st.chat_message("assistant"):
            with st.spinner("思考中..."):
                reply = st.session_state.chat_session.send_message(prompt, context_patents=patents)
            st.markdown(reply)
        st.session_state.chat_messages.append({"role": "assistant", "content": reply})
