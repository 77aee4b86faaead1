# tomasulo_app.py
# -------------------------------------------------------------
# Simulador didático do Algoritmo de Tomasulo
# Interface Streamlit sobre o núcleo em tomasulo_core.py
# -------------------------------------------------------------
# Recursos:
# - Instruções: L.D, S.D, ADD.D, SUB.D, MUL.D, DIV.D
# - Unidades Load/Add/Mult/Store, tabela de status dos registradores (Qi)
# - Clique em uma instrução para avançá-la uma fase (Issue/Execute/Write)
# - Ciclo completo, rodar N ciclos e rodar até terminar
# -------------------------------------------------------------
# Uso: streamlit run tomasulo_app.py

from __future__ import annotations
import streamlit as st

from tomasulo_core import (
    DEFAULT_PROGRAM,
    DEFAULT_UNIT_COUNTS,
    MalformedInstruction,
    TomasuloSim,
)

st.set_page_config(page_title="Simulador de Tomasulo", layout="wide")

st.title("Simulador de Tomasulo — Renomeação e CDB")

with st.sidebar:
    st.header("Configuração")
    n_load = st.number_input("Unidades Load", 1, 8, DEFAULT_UNIT_COUNTS["Load"])
    n_add = st.number_input("Unidades Add", 1, 8, DEFAULT_UNIT_COUNTS["Add"])
    n_mult = st.number_input("Unidades Mult", 1, 8, DEFAULT_UNIT_COUNTS["Mult"])
    n_store = st.number_input("Unidades Store", 1, 8, DEFAULT_UNIT_COUNTS["Store"])

    st.markdown("---")
    runN = st.number_input("Rodar N ciclos", 1, 1000, 5)

prog_text = st.text_area("Programa (ASM didático)", value=DEFAULT_PROGRAM, height=220)

# Estado na sessão
if "sim" not in st.session_state or st.button("(Re)Montar & Resetar", type="primary"):
    counts = {
        "Load": int(n_load),
        "Add": int(n_add),
        "Mult": int(n_mult),
        "Store": int(n_store),
    }
    try:
        st.session_state.sim = TomasuloSim(prog_text, unit_counts=counts)
    except MalformedInstruction as e:
        st.error(f"Erro na montagem: {e}")
        st.stop()

sim: TomasuloSim = st.session_state.sim

# Controles de execução
c1, c2, c3, _ = st.columns([1, 1, 1, 2])
if c1.button("Step (1 ciclo)"):
    sim.step_cycle()
if c2.button(f"Rodar {runN} ciclos"):
    sim.run(max_cycles=int(runN))
if c3.button("Rodar até terminar", type="secondary"):
    sim.run()

# Um botão por instrução: cada clique avança uma fase
st.markdown("### Instruções (clique para avançar)")
for idx, entry in enumerate(sim.log):
    label = f"{idx}: {entry.instruction} — {entry.phase.value}"
    if st.button(label, key=f"advance-{idx}", disabled=entry.wrote_result):
        sim.advance(idx)
        st.rerun()

st.subheader("Métricas")
st.write(sim.metrics())

snap = sim.snapshot()

st.markdown("---")
colA, colB = st.columns(2)
with colA:
    st.markdown("### Status das instruções")
    st.dataframe(snap["instructions"], use_container_width=True)

    st.markdown("### Status dos registradores (Qi)")
    st.dataframe([snap["register_status"]], use_container_width=True)

with colB:
    st.markdown("### Estações de reserva")
    st.dataframe(snap["units"], use_container_width=True)

st.markdown("### Log do passo atual")
if sim.events:
    for e in sim.events:
        st.write("• ", e)
else:
    st.write("(sem eventos)")

with st.expander("Histórico completo"):
    for e in sim.history:
        st.text(e)

st.markdown("---")
st.caption("Simulador didático: sem temporização por ciclo real, sem desvios e sem cálculo de endereços reais; "
           "L.D calcula o endereço simbólico em um passo separado antes de executar.")
