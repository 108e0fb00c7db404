"""
Streamlit UI for the medical report assistant.
Three parts:
1. Upload a clinical report and extract its contents with Gemini
2. Review, edit and confirm the extracted summary
3. Chat about the confirmed report (answers stream in as they are generated)

The sidebar can also add reference PDFs to the knowledge base.
"""

from pathlib import Path

import requests
import streamlit as st

from config import getSettings
from custom_types import ChatMessage
from errors import ChatFailed, ClientError
from report_client import (
    ReportApiClient,
    ReportSession,
    ReportState,
    readUpload,
    runExtraction,
)

settings = getSettings()

st.set_page_config(page_title="Medical Report Assistant", page_icon="🩺", layout="wide")


def inngestEventUrl() -> str:
    """Get Inngest dev server event URL."""
    return f"{settings.inngestApiBase}/e/medireport"


def saveUploadedPdf(file) -> Path:
    """Save uploaded file to local 'uploads' directory."""
    uploadsDir = Path("uploads")
    uploadsDir.mkdir(parents=True, exist_ok=True)
    filePath = uploadsDir / file.name
    filePath.write_bytes(file.getbuffer())
    return filePath


def sendReferenceIngestEvent(pdfPath: Path) -> str:
    """Trigger the reference PDF ingestion background job via HTTP."""
    payload = {
        "name": "medic/ingestReference",
        "data": {
            "pdfPath": str(pdfPath.resolve()),
            "sourceId": pdfPath.name,
            "namespace": settings.qdrantNamespace,
        },
    }
    resp = requests.post(inngestEventUrl(), json=payload, timeout=30)
    resp.raise_for_status()
    return resp.json()["ids"][0]  # Event ID


@st.cache_resource
def apiClient() -> ReportApiClient:
    return ReportApiClient(settings.reportApiBase)


def getReport() -> ReportSession:
    if "report" not in st.session_state:
        st.session_state.report = ReportSession(maxBytes=settings.maxUploadBytes)
    return st.session_state.report


def setReport(session: ReportSession) -> None:
    st.session_state.report = session


def onReportSelected() -> None:
    """File uploader callback: validate, normalize and encode the new file."""
    uploaded = st.session_state.get("reportFile")
    if uploaded is None:
        setReport(getReport().clear())
        return
    try:
        upload = readUpload(uploaded, uploaded.name, uploaded.type, declaredSize=uploaded.size)
        session = getReport().selectFile(upload).prepare(settings.imageQuality)
    except ClientError as e:
        st.session_state.notice = str(e)
        return
    if session.state == ReportState.FAILED:
        st.session_state.notice = session.error
    setReport(session)


def onSummaryEdited() -> None:
    report = getReport()
    if report.state == ReportState.EXTRACTED:
        setReport(report.editResult(st.session_state.summary))


# Sidebar: reference corpus
with st.sidebar:
    st.subheader("Reference library")
    referencePdf = st.file_uploader("Add a medical reference PDF", type=["pdf"], key="referencePdf")
    if referencePdf is not None and st.button("Ingest reference"):
        with st.spinner("Uploading and triggering ingestion..."):
            path = saveUploadedPdf(referencePdf)
            sendReferenceIngestEvent(path)
        st.success(f"Triggered ingestion for: {path.name}")


st.title("Medical Report Assistant")

reportCol, chatCol = st.columns([2, 3])

with reportCol:
    st.subheader("Report")
    report = getReport()

    if notice := st.session_state.pop("notice", None):
        st.error(notice)

    maxMb = settings.maxUploadBytes / (1024 * 1024)
    st.file_uploader(
        "Choose a report",
        type=["jpg", "jpeg", "png", "webp", "pdf"],
        key="reportFile",
        on_change=onReportSelected,
        disabled=report.busy,
    )
    st.caption(f"Supported formats: JPEG, PNG, WebP, PDF (Max {maxMb:g}MB)")

    if report.upload is not None:
        st.caption(f"Selected: {report.upload.name}")

    analyze = st.button("1. Analyze report", disabled=not report.canExtract or report.busy)
    if analyze and report.canExtract and not report.busy:
        with st.spinner("Processing your report..."):
            report = runExtraction(report, apiClient(), onChange=setReport)
        if report.state == ReportState.FAILED:
            st.error(f"Analysis failed: {report.error}")
        else:
            st.success("Analysis complete")

    if report.state in (ReportState.EXTRACTED, ReportState.CONFIRMED):
        st.session_state.summary = report.result
        st.text_area(
            "Report summary",
            key="summary",
            height=300,
            on_change=onSummaryEdited,
            disabled=report.state == ReportState.CONFIRMED,
        )

    confirmCol, clearCol = st.columns(2)
    if confirmCol.button("2. Looks good", disabled=report.state != ReportState.EXTRACTED):
        setReport(report.confirm())
        st.rerun()
    if clearCol.button("Clear", disabled=report.busy or report.state == ReportState.IDLE):
        setReport(report.clear())
        st.rerun()

    if report.state == ReportState.CONFIRMED:
        st.info("Report confirmed. Chat answers will take it into account.")


with chatCol:
    st.subheader("Ask about the report")

    if "messages" not in st.session_state:
        st.session_state.messages = []

    for msg in st.session_state.messages:
        with st.chat_message(msg.role):
            st.markdown(msg.content)

    if question := st.chat_input("Type your medical question"):
        st.session_state.messages.append(ChatMessage(role="user", content=question))
        with st.chat_message("user"):
            st.markdown(question)

        with st.chat_message("assistant"):
            try:
                answer = st.write_stream(
                    apiClient().streamChat(st.session_state.messages, getReport().reportContext)
                )
            except (ChatFailed, requests.RequestException) as e:
                st.error(f"Chat failed: {e}")
                answer = None

        if answer:
            st.session_state.messages.append(ChatMessage(role="assistant", content=str(answer)))

